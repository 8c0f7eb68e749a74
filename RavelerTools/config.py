"""
Loading and validating config files for stack analyses.

A config file may be .json or .yaml, for example:

    source:
      directory: exported-session
      base-directory: base-stack
      tile-cache-size: 16
    target:
      directory: new-base-stack
    options:
      bodies: [101, 102, 103]
      check-superpixel-drift: true
"""
import os
import json

from jsonschema import ValidationError

# ruamel.yaml supports YAML 1.2, which has
# slightly better compatibility with json.
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError
yaml = YAML(typ='rt')
yaml.default_flow_style = False

from .json_util import validate_and_inject_defaults
from .stack import Stack, StackSchema
from .reconutils.overlap import overlap_analysis, MAX_SUPERPIXEL_DRIFT

import logging
logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    pass


OverlapOptionsSchema = \
{
    "type": "object",
    "description": "Options",
    "default": {},
    "additionalProperties": False,
    "properties": {
        "bodies": {
            "description": "Source bodies to match against the target stack.",
            "type": "array",
            "items": { "type": "integer" },
            "default": []
        },
        "check-superpixel-drift": {
            "description": "Abort if the superpixels of the requested bodies differ too much\n"
                           "between the two stacks (according to their superpixel_bounds.txt files).",
            "type": "boolean",
            "default": False
        },
        "max-superpixel-drift": {
            "description": "Maximum tolerated fraction of differing superpixel voxels.",
            "type": "number",
            "minimum": 0.0,
            "maximum": 1.0,
            "default": MAX_SUPERPIXEL_DRIFT
        }
    }
}

OverlapConfigSchema = \
{
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Overlap analysis between two Raveler stacks",
    "type": "object",
    "required": ["source", "target"],
    "additionalProperties": False,
    "properties": {
        "source": StackSchema,
        "target": StackSchema,
        "options": OverlapOptionsSchema
    }
}


def load_config(config_path, schema=OverlapConfigSchema):
    """
    Load a .json or .yaml config file, validate it against the
    given schema and inject default values for missing settings.
    """
    ext = os.path.splitext(config_path)[1]
    try:
        with open(config_path, 'r') as f:
            if ext == '.json':
                config_data = json.load(f)
            elif ext in ('.yml', '.yaml'):
                config_data = yaml.load(f)
            else:
                raise ConfigError(f"Unknown config file extension: {ext}")
    except OSError as ex:
        raise ConfigError(f"Could not load config file: {config_path}: {ex}")
    except (json.JSONDecodeError, YAMLError) as ex:
        raise ConfigError(f"Could not parse config file: {config_path}: {ex}")

    try:
        validate_and_inject_defaults(config_data, schema)
    except ValidationError as ex:
        raise ConfigError(f"Validation error in {config_path}: {ex.message}")

    logger.debug(f"Loaded config {config_path}:\n" + json.dumps(config_data, indent=2))
    return config_data


def stacks_from_config(config_data, config_dir):
    """
    Returns:
        (source_stack, target_stack)
    """
    source = Stack.from_config(config_data["source"], config_dir)
    target = Stack.from_config(config_data["target"], config_dir)
    return source, target


def overlap_analysis_from_config(config_path):
    """
    Load the given config file and run an overlap analysis between its
    source and target stacks, for the configured bodies.

    Returns:
        dict of { body: BestOverlap } (see overlap_analysis())
    """
    config_path = os.path.abspath(config_path)
    config_data = load_config(config_path)
    options = config_data["options"]
    if not options["bodies"]:
        raise ConfigError(f"No bodies listed in config: {config_path}")

    source, target = stacks_from_config(config_data, os.path.dirname(config_path))
    return overlap_analysis( source, target, options["bodies"],
                             options["check-superpixel-drift"],
                             options["max-superpixel-drift"] )
