from pathlib import Path
from typing import Callable

import click

from iohub.ngff import Plate, open_ome_zarr
from natsort import natsorted


def _validate_and_process_paths(
    ctx: click.Context, opt: click.Option, value: tuple[str, ...]
) -> list[Path]:
    # Sort and validate the input paths
    input_paths = [Path(path) for path in natsorted(value)]
    with open_ome_zarr(input_paths[0], mode='r') as dataset:
        if isinstance(dataset, Plate):
            raise click.BadParameter(
                "Please supply a single position instead of an HCS plate. "
                "Likely fix: replace 'input.zarr' with 'input.zarr/0/0/0'"
            )
    return input_paths


def _str_to_path(ctx: click.Context, opt: click.Option, value: str) -> Path:
    return Path(value)


def input_position_dirpaths() -> Callable:
    def decorator(f: Callable) -> Callable:
        return click.option(
            "--input-position-dirpaths",
            "-i",
            required=True,
            multiple=True,
            type=click.Path(exists=True, file_okay=False, dir_okay=True),
            callback=_validate_and_process_paths,
            help='Path to an input position, for example: "input.zarr/0/0/0". '
            'Can be repeated.',
        )(f)

    return decorator


def config_filepath() -> Callable:
    def decorator(f: Callable) -> Callable:
        return click.option(
            "--config-filepath",
            "-c",
            required=True,
            type=click.Path(exists=True, file_okay=True, dir_okay=False),
            callback=_str_to_path,
            help="Path to YAML configuration file.",
        )(f)

    return decorator


def output_dirpath() -> Callable:
    def decorator(f: Callable) -> Callable:
        return click.option(
            "--output-dirpath",
            "-o",
            required=True,
            type=click.Path(exists=False, file_okay=False, dir_okay=True),
            help="Path to output directory",
            callback=_str_to_path,
        )(f)

    return decorator
