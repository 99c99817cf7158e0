import logging

logger = logging.getLogger(__name__)


class PluginRegistry:
    """A class that serves as a central place to register and look up plugins.

    Plugins that are derived from a base class are stored in that base class's registry, e.g.
    challenge solvers in the registry of :class:`~acmeflow.client.ChallengeSolver` and credential
    stores in that of :class:`~acmeflow.client.CredentialStore`.
    """

    _registry_map = dict()

    def __init__(self):
        self._subclasses = dict()

    @classmethod
    def get_registry(cls, plugin_parent_cls: type) -> "PluginRegistry":
        """Gets the plugin registry for the given parent class.

        :param plugin_parent_cls: The parent class.
        :return: The plugin registry for the given parent class.
        """
        registry = cls._registry_map.setdefault(plugin_parent_cls, PluginRegistry())
        return registry

    @classmethod
    def register_plugin(cls, config_name):
        """Decorator that registers a class as a plugin under the given name.
        The name is used to refer to the class in config files.

        :param config_name: The plugin's name in config files
        :raises: :class:`ValueError` If the name is already taken in the registry
        :return: The registered plugin class.
        """

        def deco(plugin_cls):
            # find the parent class in the registry map
            for registered_parent, registry_ in cls._registry_map.items():
                if issubclass(plugin_cls, registered_parent):
                    registry = registry_
                    break
            else:
                registry = cls.get_registry(plugin_cls.__mro__[1])

            if config_name in registry._subclasses:
                raise ValueError(
                    f"Cannot register {plugin_cls.__name__} as {config_name}, the name is taken by "
                    f"{registry._subclasses[config_name].__name__}."
                )

            logger.debug("Registering plugin %s as %s", plugin_cls.__name__, config_name)
            registry._subclasses[config_name] = plugin_cls

            return plugin_cls

        return deco

    def config_mapping(self) -> dict[str, type]:
        """Method that maps plugin config names to the actual class object.

        :return: Mapping from config names to the actual class objects.
        """
        return self._subclasses

    def get_plugin(self, config_name) -> type:
        """Queries the registry for a plugin by config name.

        :param config_name: The plugin's config name
        :raises: :class:`ValueError` If no plugin is registered by the given name
        :return: The found plugin class
        """
        if config_name not in (plugin_names := self._subclasses.keys()):
            raise ValueError(
                f"The plugin {config_name} has not been registered. Valid options: "
                f"{', '.join(sorted(plugin_names))}."
            )

        return self._subclasses[config_name]
