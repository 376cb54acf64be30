"""Field types shared by the wire schemas."""

from typing import Annotated

from pydantic import StringConstraints

# Stripped so a padded id matches the endpoint stored on join.
Identifier = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]
