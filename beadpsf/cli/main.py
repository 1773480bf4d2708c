import importlib

import click

CONTEXT = {"help_option_names": ["-h", "--help"]}


class NaturalOrderGroup(click.Group):
    def list_commands(self, ctx):
        return list(self.commands.keys())


@click.group(context_settings=CONTEXT, cls=NaturalOrderGroup)
def cli():
    """command-line tools for beadpsf"""


class LazyCommand(click.Command):
    """Defer importing a command module (and torch) until the command runs."""

    def __init__(self, name, import_path, help=None, short_help=None):
        self.import_path = import_path
        self._real_command = None
        super().__init__(name=name, help=help, short_help=short_help)

    def _load_real_command(self):
        if self._real_command is None:
            module_path, attr_name = self.import_path.rsplit(".", 1)
            module = importlib.import_module(module_path)
            self._real_command = getattr(module, attr_name)

    def invoke(self, ctx):
        self._load_real_command()
        return self._real_command.invoke(ctx)

    def get_params(self, ctx):
        self._load_real_command()
        return self._real_command.get_params(ctx)

    def get_help(self, ctx):
        self._load_real_command()
        return self._real_command.get_help(ctx)


COMMANDS = [
    {
        "name": "measure-psf",
        "import_path": "beadpsf.measure_psf.measure_psf_cli",
        "help": "Measure bead center and FWHM of a point spread function (PSF) stack",
    },
]


for cmd in COMMANDS:
    cli.add_command(
        LazyCommand(
            name=cmd["name"],
            import_path=cmd["import_path"],
            help=cmd["help"],
            short_help=cmd["help"].split(".")[0],
        )
    )


if __name__ == "__main__":
    cli()
