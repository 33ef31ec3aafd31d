from pydantic import BaseModel, ConfigDict

from mellon.errors import TokenParseError

FIELD_SEPARATOR = ":"


class Token(BaseModel):
    """
    A label bound to an opaque bearer secret.

    Serialized as ``label:secret`` on a single line. Only the first separator
    is significant when parsing, so secrets may contain ``:`` but labels may not.
    """

    model_config = ConfigDict(frozen=True)

    label: str
    secret: str

    @classmethod
    def parse(cls, line: str) -> "Token":
        label, sep, secret = line.partition(FIELD_SEPARATOR)
        if not sep:
            raise TokenParseError(
                "Unable to parse token from string! Improperly segmented."
            )
        return cls(label=label.strip(), secret=secret.strip())

    def serialize(self) -> str:
        return f"{self.label}{FIELD_SEPARATOR}{self.secret}"

    def masked_secret(self, visible: int = 4) -> str:
        """Return the secret with all but the last ``visible`` characters starred."""
        hidden = max(len(self.secret) - visible, 0)
        return "*" * hidden + self.secret[hidden:]

    def __str__(self) -> str:
        return self.serialize()
