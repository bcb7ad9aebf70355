"""Conversion entre la cadena de atributos UNIX (``drwxr-xr-x``) y el modo numerico."""

from typing import Optional

_TRIPLETS = ("rwx", "rwx", "rwx")


def attribute_to_mode(attributes: str) -> Optional[int]:
    """
    ``-rwxr-xr--`` -> 0o754. Acepta la cadena con o sin el caracter de tipo;
    devuelve None si no tiene forma de permisos.
    """
    if not attributes:
        return None
    perms = attributes[-9:]
    if len(perms) != 9:
        return None
    mode = 0
    for index, char in enumerate(perms):
        mode <<= 1
        expected = "rwx"[index % 3]
        if char == expected or (expected == "x" and char in "sStT" and char.islower()):
            mode |= 1
        elif char not in "-sStT":
            return None
    return mode


def mode_to_attribute(mode: int, type_char: str = "-") -> str:
    """0o744 -> ``-rwxr--r--``."""
    chars = []
    for shift, letters in zip((6, 3, 0), _TRIPLETS):
        bits = (mode >> shift) & 0o7
        chars.append(letters[0] if bits & 4 else "-")
        chars.append(letters[1] if bits & 2 else "-")
        chars.append(letters[2] if bits & 1 else "-")
    return type_char + "".join(chars)
