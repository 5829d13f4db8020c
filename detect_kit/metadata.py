from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

PathLike = Union[str, Path]


@dataclass(frozen=True)
class DataConfig:
    """
    Parsed `.data` file: class count plus the label list (and optional tree) paths.
    """

    classes: Optional[int]
    names_path: Path
    tree_path: Optional[Path] = None
    options: Optional[Dict[str, str]] = None


def read_options(path: PathLike) -> Dict[str, str]:
    """
    Read `key = value` lines; blank lines and `#`/`;` comments are ignored.
    """

    p = Path(path)
    options: Dict[str, str] = {}
    with p.open("r", encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line[0] in "#;":
                continue
            if "=" not in line:
                raise ValueError(f"{p}:{lineno}: expected 'key = value', got {line!r}")
            key, value = line.split("=", 1)
            options[key.strip()] = value.strip()
    return options


def load_data_config(path: PathLike, default_names: str = "data/names.list") -> DataConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Data config not found: {p}")
    options = read_options(p)

    classes: Optional[int] = None
    if "classes" in options:
        try:
            classes = int(options["classes"])
        except ValueError as exc:
            raise ValueError(f"{p}: classes must be an integer, got {options['classes']!r}") from exc
        if classes <= 0:
            raise ValueError(f"{p}: classes must be > 0")

    def _resolve(value: str) -> Path:
        candidate = Path(value)
        return candidate if candidate.is_absolute() else (p.parent / candidate).resolve()

    names_path = _resolve(options.get("names", default_names))
    tree_path = _resolve(options["tree"]) if options.get("tree") else None
    return DataConfig(classes=classes, names_path=names_path, tree_path=tree_path, options=options)


def load_class_names(path: PathLike) -> List[str]:
    """
    Load the ordered label list.

    Two layouts are accepted: one label per line, or a `names:` mapping block

        names:
          0: person
          1: bicycle

    Mapping ids must be contiguous from 0.
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Label list not found: {p}")

    lines = [raw.strip() for raw in p.read_text(encoding="utf-8").splitlines()]
    if "names:" not in lines:
        return [line for line in lines if line and not line.startswith("#")]

    names: Dict[int, str] = {}
    in_names = False
    for line in lines:
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names or ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        if not left.isdigit():
            continue
        names[int(left)] = right.strip().strip("'").strip('"')

    if sorted(names) != list(range(len(names))):
        raise ValueError(f"{p}: class ids must be contiguous from 0")
    return [names[i] for i in range(len(names))]
