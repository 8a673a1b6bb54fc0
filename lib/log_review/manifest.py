import json
from dataclasses import dataclass
from pathlib import Path

# Key pairs accepted for the two test lists, most specific first.
MANIFEST_KEYS = (
    ("fail_to_pass", "pass_to_pass"),
    ("FAIL_TO_PASS", "PASS_TO_PASS"),
    ("f2p", "p2p"),
)


class ManifestError(ValueError):
    pass


@dataclass(frozen=True)
class Manifest:
    f2p: tuple[str, ...]
    p2p: tuple[str, ...]

    @property
    def universe(self) -> list[str]:
        return list(dict.fromkeys([*self.f2p, *self.p2p]))

    def test_type(self, name: str) -> str:
        if name in self.f2p:
            return "fail_to_pass"
        if name in self.p2p:
            return "pass_to_pass"
        return "unknown"


def _coerce_list(value, field: str, source: str) -> tuple[str, ...]:
    if isinstance(value, str):
        # Some datasets store the list as a JSON-encoded string.
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ManifestError(f"{source}: '{field}' is not a JSON list: {exc}") from exc
    if not isinstance(value, list):
        raise ManifestError(f"{source}: '{field}' must be a list of test names.")
    names = []
    for item in value:
        if not isinstance(item, str):
            raise ManifestError(f"{source}: '{field}' contains a non-string entry: {item!r}")
        names.append(item)
    return tuple(dict.fromkeys(names))


def manifest_from_dict(data, source: str = "<manifest>") -> Manifest:
    if not isinstance(data, dict):
        raise ManifestError(f"{source}: manifest root must be an object.")
    for f2p_key, p2p_key in MANIFEST_KEYS:
        if f2p_key in data or p2p_key in data:
            return Manifest(
                f2p=_coerce_list(data.get(f2p_key, []), f2p_key, source),
                p2p=_coerce_list(data.get(p2p_key, []), p2p_key, source),
            )
    raise ManifestError(
        f"{source}: manifest must contain 'fail_to_pass'/'pass_to_pass' or "
        f"'f2p'/'p2p' keys. Found: {sorted(data)}"
    )


def load_manifest(path: Path) -> Manifest:
    if not path.is_file():
        raise ManifestError(f"Manifest not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except OSError as exc:
        raise ManifestError(f"{path}: cannot read manifest: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ManifestError(f"{path}: invalid JSON: {exc}") from exc
    return manifest_from_dict(data, str(path))
