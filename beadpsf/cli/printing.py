import math

import click
import yaml


def echo_headline(headline):
    click.echo(click.style(headline, fg="green"))


def echo_settings(settings, headline="Settings:"):
    echo_headline(headline)
    click.echo(yaml.dump(settings.model_dump(), default_flow_style=False, sort_keys=False))


def echo_psf_measurement(result):
    """Print the PSF center and the FWHM of every cross-section."""
    echo_headline("Results:")
    center = result.center
    click.echo(f"PSF center (x, y, z): ({center.x}, {center.y}, {center.z})")
    if center.bad_fit:
        click.echo(
            click.style("Lateral bead center is unreliable, cropping was skipped", fg="yellow")
        )

    for label, measurement in (
        ("X", result.x),
        ("Y", result.y),
        ("Z/X", result.zx),
        ("Z/Y", result.zy),
    ):
        if math.isnan(measurement.fwhm):
            click.echo(f"{label} FWHM: fit failed ({measurement.fit_error})")
        else:
            click.echo(f"{label} FWHM: {measurement.fwhm:0.3f} um")
