"""Short human-readable summaries of operation results."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = ["format_result"]


def format_result(name: str, arguments: Mapping[str, Any] | None, data: Any) -> str | None:
    """Summarize ``data`` returned by operation ``name``; ``None`` when nothing useful."""

    if not data:
        return None
    arguments = arguments or {}
    info = data if isinstance(data, Mapping) else {}

    if name == "query_context":
        parts: list[str] = []
        if info.get("projectInfo"):
            parts.append("project info")
        if info.get("videos"):
            parts.append(f"videos ({_total(info['videos'])})")
        if info.get("assets"):
            parts.append(f"assets ({_total(info['assets'])})")
        if info.get("artStyles"):
            parts.append("art styles")
        return f"Queried {', '.join(parts)}" if parts else "Queried project context"

    if name == "query_assets":
        if isinstance(info.get("message"), str):
            return info["message"]
        if info.get("total") is not None:
            return f"Found {info['total']} asset(s)"
        return "Query complete"

    if name == "query_timeline":
        clips = info.get("clips")
        if isinstance(clips, list):
            return f"Timeline has {len(clips)} clip(s)"
        return "Query complete"

    if name == "generate_video_asset":
        if info.get("title"):
            return f"Created video: {info['title']}"
        return "Created video generation task"

    if name == "generate_image_asset":
        if info.get("createdCount") is not None:
            return f"Created {info['createdCount']} generation task(s)"
        if isinstance(info.get("assetIds"), list):
            return f"Created {len(info['assetIds'])} generation task(s)"
        return "Created image generation task"

    if name in ("generate_sound_effect", "generate_bgm", "generate_dialogue"):
        label = {"generate_sound_effect": "sound effect", "generate_bgm": "background music"}.get(name, "dialogue")
        return f"Created {label} generation task"

    if name == "update_asset":
        if info.get("updated") is not None:
            return f"Updated {info['updated']} asset(s)"
        return "Updated asset"

    if name == "set_project_info":
        fields = info.get("updatedFields")
        if isinstance(fields, list) and fields:
            return f"Updated project {', '.join(str(item) for item in fields)}"
        return "Updated project info"

    if name == "delete_asset":
        count = info.get("deleted")
        if count is None:
            asset_ids = arguments.get("assetIds")
            count = len(asset_ids) if isinstance(asset_ids, list) else 1
        return f"Deleted {count} asset(s)"

    if isinstance(info.get("message"), str):
        return info["message"]
    if info.get("count") is not None:
        return f"Completed {info['count']} operation(s)"
    if info.get("total") is not None:
        return f"{info['total']} item(s) in total"
    return None


def _total(section: Any) -> int:
    if isinstance(section, Mapping):
        return int(section.get("total") or 0)
    if isinstance(section, list):
        return len(section)
    return 0
