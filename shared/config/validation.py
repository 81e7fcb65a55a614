"""配置校验错误格式化。

pydantic 的原始报错对 typo 不友好；这里把 `extra_forbidden` 错误补上“did you mean”建议，
启动阶段就把拼写错误指出来。
"""

from __future__ import annotations

import difflib
from typing import Any, Iterable

from pydantic import BaseModel, ValidationError


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _model_at(root: type[BaseModel], path: tuple[Any, ...]) -> type[BaseModel] | None:
    """沿着 loc 路径找到对应的子模型类型（找不到返回 None）。"""
    model: type[BaseModel] = root
    for part in path:
        field = model.model_fields.get(str(part))
        if field is None:
            return None
        ann = field.annotation
        candidates = [ann, *getattr(ann, "__args__", ())]
        nested = next(
            (c for c in candidates if isinstance(c, type) and issubclass(c, BaseModel)),
            None,
        )
        if nested is None:
            return None
        model = nested
    return model


def format_validation_error(exc: ValidationError, root: type[BaseModel]) -> str:
    parts: list[str] = []
    for err in exc.errors():
        loc = tuple(err.get("loc", ()))
        dotted = ".".join(str(p) for p in ("config", *loc))
        if err.get("type") == "extra_forbidden" and loc:
            parent = _model_at(root, loc[:-1])
            suggestion = _suggest_key(str(loc[-1]), parent.model_fields) if parent else None
            if suggestion:
                parts.append(f"{dotted}: unknown key (did you mean '{suggestion}'?)")
            else:
                parts.append(f"{dotted}: unknown key")
            continue
        parts.append(f"{dotted}: {err.get('msg')}")
    return "Invalid config: " + "; ".join(parts)
