"""
Identity Codec - Composite identifiers encoded as a single token.

Some resources are addressed by several foreign keys (for example a service
instance is addressed by service id and environment id) rather than one
opaque key. The codec joins the components with ':' and escapes any
occurrence of the delimiter, so encoding is injective and decoding is total
over every token the codec produced.
"""

import re
from typing import Sequence, Tuple

from errors import MalformedIdentity

DELIMITER = ":"

_ESCAPES = {"%": "%25", DELIMITER: "%3A"}
_UNESCAPES = {v: k for k, v in _ESCAPES.items()}
_ESCAPE_PATTERN = re.compile(r"%(?!25|3A)")


def _escape(component: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in component)


def _unescape(component: str) -> str:
    return re.sub(r"%25|%3A", lambda m: _UNESCAPES[m.group(0)], component)


class IdentityCodec:
    """
    Encodes an ordered tuple of component keys into one opaque token.

    A codec has a fixed arity; tokens with a different number of components
    are rejected. Empty components are rejected because they usually mean an
    attribute was never resolved.
    """

    def __init__(self, *component_names: str):
        if not component_names:
            raise ValueError("IdentityCodec needs at least one component")
        self.component_names: Tuple[str, ...] = tuple(component_names)

    @property
    def arity(self) -> int:
        return len(self.component_names)

    def encode(self, components: Sequence[str]) -> str:
        """
        Encode components into a token.

        Args:
            components: Component values, in the codec's declared order.

        Returns:
            The opaque identity token.

        Raises:
            MalformedIdentity: If the arity is wrong or a component is empty
                or not a string.
        """
        components = tuple(components)
        if len(components) != self.arity:
            raise MalformedIdentity(
                components,
                f"expected {self.arity} components "
                f"({', '.join(self.component_names)}), got {len(components)}",
            )
        for name, value in zip(self.component_names, components):
            if not isinstance(value, str) or not value:
                raise MalformedIdentity(
                    components, f"component '{name}' must be a non-empty string"
                )
        return DELIMITER.join(_escape(c) for c in components)

    def decode(self, token: str) -> Tuple[str, ...]:
        """
        Decode a token back into its components.

        Args:
            token: A token previously produced by encode().

        Returns:
            Tuple of component values.

        Raises:
            MalformedIdentity: If the token could not have been produced by
                this codec.
        """
        if not isinstance(token, str) or not token:
            raise MalformedIdentity(token, "token must be a non-empty string")

        parts = token.split(DELIMITER)
        if len(parts) != self.arity:
            raise MalformedIdentity(
                token,
                f"expected {self.arity} components "
                f"({', '.join(self.component_names)}), got {len(parts)}",
            )

        components = []
        for name, part in zip(self.component_names, parts):
            if not part:
                raise MalformedIdentity(token, f"component '{name}' is empty")
            if _ESCAPE_PATTERN.search(part):
                raise MalformedIdentity(token, f"invalid escape in '{name}'")
            components.append(_unescape(part))
        return tuple(components)

    def decode_as_dict(self, token: str) -> dict:
        """Decode a token into a mapping of component name to value."""
        return dict(zip(self.component_names, self.decode(token)))

    def __repr__(self) -> str:
        return f"IdentityCodec({', '.join(self.component_names)})"
