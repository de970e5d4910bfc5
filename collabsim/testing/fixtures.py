# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim Test Fixtures
#
# temp_tree()   materialize a JSON description as files in a temp dir
# sample_text() deterministic multi-line text

import json
import os
import tempfile
from typing import Any, Dict, Union

from collabsim.rpc.errors import HarnessError


def sample_text(rows: int, cols: int) -> str:
    """rows lines of cols chars each: 'aaa', 'bbb', ... joined by newlines."""
    return "\n".join(chr(ord("a") + row) * cols for row in range(rows))


def temp_tree(tree: Union[Dict[str, Any], str]) -> tempfile.TemporaryDirectory:
    """
    Create a temp directory whose contents mirror tree.
      dict -> subdirectory   str -> file with that content   None -> empty directory
    tree may also be a JSON string. The directory is removed on cleanup().
    """
    if isinstance(tree, str):
        tree = json.loads(tree)
    if not isinstance(tree, dict):
        raise HarnessError("You must pass a JSON object to this helper")

    tmp = tempfile.TemporaryDirectory(prefix="collabsim-")
    try:
        _write_tree(tmp.name, tree)
    except BaseException:
        tmp.cleanup()
        raise
    return tmp


def _write_tree(path: str, tree: Dict[str, Any]) -> None:
    for name, contents in tree.items():
        entry = os.path.join(path, name)
        if isinstance(contents, dict):
            os.mkdir(entry)
            _write_tree(entry, contents)
        elif contents is None:
            os.mkdir(entry)
        elif isinstance(contents, str):
            with open(entry, "w", encoding="utf-8") as f:
                f.write(contents)
        else:
            raise HarnessError(
                f"JSON object must contain only objects, strings, or null "
                f"(got {type(contents).__name__} for {name!r})"
            )
