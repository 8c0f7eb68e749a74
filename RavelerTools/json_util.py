import copy

from jsonschema import validators


def _extend_with_default(validator_class):
    """
    Return a subclass of the given validator class whose 'properties' rule
    fills in missing properties from their schema defaults before validating them.
    Injected sub-objects are then validated (and filled) in turn, so nested
    defaults are applied even when the enclosing object was absent.

    Adapted from the jsonschema FAQ:
    http://python-jsonschema.readthedocs.org/en/latest/faq/
    """
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults_and_validate(validator, properties, instance, schema):
        for property, subschema in properties.items():
            if "default" in subschema:
                instance.setdefault(property, copy.deepcopy(subschema["default"]))

        yield from validate_properties(validator, properties, instance, schema)

    return validators.extend(validator_class, {"properties" : set_defaults_and_validate})


def validate_and_inject_defaults(instance, schema):
    """
    Validate a config against its schema, modifying it IN-PLACE to fill
    missing settings with their schema-provided default values.

    (ruamel.yaml's CommentedMap and CommentedSeq are dict/list subclasses,
    so yaml-loaded configs validate just like json-loaded ones.)

    Raises:
        jsonschema.ValidationError
    """
    cls = validators.validator_for(schema)
    cls.check_schema(schema)
    _extend_with_default(cls)(schema).validate(instance)
