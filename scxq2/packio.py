from __future__ import annotations

import json as _json
import os
from pathlib import Path
from typing import Any, Union

from .errors import ErrorCode, PackFormatError
from .model import Pack

PathLike = Union[str, "os.PathLike[str]"]


def load_pack(path: PathLike) -> Any:
    """Read pack JSON from ``path``.

    Returns the parsed JSON untouched; structural checks belong to the
    verifier. OSError propagates for unreadable files.
    """
    raw = Path(path).read_bytes()
    try:
        return _json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise PackFormatError(f"{path}: not UTF-8: {exc}", code=ErrorCode.PACK_MISSING)
    except _json.JSONDecodeError as exc:
        raise PackFormatError(f"{path}: invalid JSON: {exc}", code=ErrorCode.CANON_INVALID_JSON)
    except RecursionError:
        raise PackFormatError(f"{path}: JSON nested too deeply", code=ErrorCode.CANON_INVALID_JSON)


def dump_pack(obj: Any, path: PathLike, *, indent: int = 2) -> None:
    """Write a pack (or any JSON artifact) to ``path``.

    Written to a temporary sibling first and moved into place, so a reader
    never sees a half-written file.
    """
    if isinstance(obj, Pack):
        obj = obj.to_json()
    dest = Path(path)
    tmp = dest.with_name(dest.name + ".tmp")
    text = _json.dumps(obj, ensure_ascii=False, indent=indent)
    # Lone surrogates cannot be written as UTF-8; JSON escapes keep them intact
    try:
        data = text.encode("utf-8")
    except UnicodeEncodeError:
        data = _json.dumps(obj, ensure_ascii=True, indent=indent).encode("ascii")
    with open(tmp, "wb") as f:
        f.write(data)
        f.write(b"\n")
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, dest)
