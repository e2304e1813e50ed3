import json
import logging
import os
from typing import Any

logger = logging.getLogger("audit-vault")


def load_json(file_name: str) -> Any:
    if not os.path.exists(file_name):
        return None
    with open(file_name, encoding="utf-8") as f:
        return json.load(f)


def write_json(json_obj: Any, file_name: str) -> None:
    # Write next to the target and swap in, readers never see a half-written file
    tmp_name = f"{file_name}.tmp"
    with open(tmp_name, "w", encoding="utf-8") as f:
        json.dump(json_obj, f, indent=2, ensure_ascii=False)
    os.replace(tmp_name, file_name)
