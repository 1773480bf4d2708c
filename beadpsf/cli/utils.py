from pathlib import Path

import yaml

from pydantic import BaseModel


def model_to_yaml(model: BaseModel, yaml_path: Path) -> None:
    """
    Save a settings model to a YAML file, leaving out fields set to None.

    Parameters
    ----------
    model : BaseModel
        Settings instance to save.
    yaml_path : Path
        The path to the output YAML file.
    """
    yaml_path = Path(yaml_path)

    if not hasattr(model, "model_dump"):
        raise TypeError("The 'model' object does not have a 'model_dump()' method.")

    model_dict = model.model_dump()
    clean_model_dict = {key: value for key, value in model_dict.items() if value is not None}

    with open(yaml_path, "w+") as f:
        yaml.dump(clean_model_dict, f, default_flow_style=False, sort_keys=False)


def yaml_to_model(yaml_path: Path, model):
    """
    Load model settings from a YAML file and create a model instance.

    An empty file yields the model defaults.

    Parameters
    ----------
    yaml_path : Path
        The path to the YAML file containing the model settings.
    model : class
        The model class used to create an instance with the loaded settings.

    Returns
    -------
    object
        An instance of the model class with the loaded settings.

    Raises
    ------
    TypeError
        If the provided model is not a class or does not have a callable constructor.
    FileNotFoundError
        If the YAML file specified by `yaml_path` does not exist.
    """
    yaml_path = Path(yaml_path)

    if not callable(getattr(model, "__init__", None)):
        raise TypeError("The provided model must be a class with a callable constructor.")

    try:
        with open(yaml_path, "r") as file:
            raw_settings = yaml.safe_load(file)
    except FileNotFoundError:
        raise FileNotFoundError(f"The YAML file '{yaml_path}' does not exist.")

    return model(**(raw_settings or {}))
