from beadpsf.cli.printing import echo_psf_measurement, echo_settings
from beadpsf.measure_psf import measure_psf
from beadpsf.settings import MeasurePSFSettings


def test_echo_settings(capsys):
    echo_settings(MeasurePSFSettings(crop_window_size=30))

    output = capsys.readouterr().out
    assert "Settings:" in output
    assert "crop_window_size: 30" in output


def test_echo_psf_measurement(capsys, bead_stack):
    echo_psf_measurement(measure_psf(bead_stack, 0.05, 0.5))

    output = capsys.readouterr().out
    assert "PSF center (x, y, z): (32, 32, 15)" in output
    assert "X FWHM: 0.353 um" in output
    assert "unreliable" not in output


def test_echo_psf_measurement_failed_fit(capsys, bead_stack):
    echo_psf_measurement(measure_psf(bead_stack, 0.05, 0.5, z_fit_components=20))

    output = capsys.readouterr().out
    assert "Z/X FWHM: fit failed" in output
    assert "Z/Y FWHM: fit failed" in output
