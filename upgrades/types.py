import click
from eth_utils import to_checksum_address


class ChecksumAddress(click.ParamType):
    name = "checksum_address"

    def convert(self, value, param, ctx):
        try:
            value = to_checksum_address(value=value)
        except ValueError:
            self.fail(f"Invalid ethereum address: {value}", param, ctx)
        else:
            return value


class VersionLabel(click.ParamType):
    """Accepts `v7` or `7`, returns `v7`."""

    name = "version"

    def convert(self, value, param, ctx):
        label = str(value).strip().lower()
        number = label[1:] if label.startswith("v") else label
        if not number.isdigit() or int(number) < 1:
            self.fail(f"{value} is not a valid version label", param, ctx)
        return f"v{int(number)}"
