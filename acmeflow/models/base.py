import acme.messages


def decode_error(jobj) -> acme.messages.Error:
    return acme.messages.Error.from_json(jobj)


def decode_list(record_cls):
    """Returns a decoder that parses a JSON list into a tuple of *record_cls* objects."""

    def decoder(jobj):
        return tuple(record_cls.from_json(item) for item in jobj)

    return decoder
