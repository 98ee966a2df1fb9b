"""Built-in operation catalog for the video project assistant."""

from __future__ import annotations

from typing import Any

from .registry import OperationCategory, OperationDescriptor

__all__ = ["build_catalog", "CATALOG_NAMES"]


def _object(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _string_array(description: str) -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


_ELEMENT_SCHEMA: dict[str, Any] = _object(
    {
        "frontal_image_url": {"type": "string", "description": "Front-facing image of the character or object."},
        "reference_image_urls": _string_array("Additional angles of the same character or object (at least one)."),
    },
)

_REFERENCE_TO_VIDEO_SCHEMA: dict[str, Any] = _object(
    {
        "prompt": {
            "type": "string",
            "description": "Cinematic English description embedding @Element1/@Image1 style placeholders.",
        },
        "elements": {"type": "array", "items": _ELEMENT_SCHEMA},
        "image_urls": _string_array("Start frame, style, scene or mood references. The first is usually the start frame."),
        "video_url": {"type": "string", "description": "Source clip when continuing an existing video."},
        "duration": {"type": "string", "enum": ["5", "10"]},
        "aspect_ratio": {"type": "string", "enum": ["16:9", "9:16", "1:1"]},
        "negative_prompt": {"type": "string"},
    },
)

_IMAGE_TO_VIDEO_SCHEMA: dict[str, Any] = _object(
    {
        "prompt": {"type": "string", "description": "Motion description referencing @Image1 (and @Image2)."},
        "start_image_url": {"type": "string"},
        "end_image_url": {"type": "string"},
        "duration": {"type": "string", "enum": ["5", "10"]},
        "negative_prompt": {"type": "string"},
    },
)


def build_catalog() -> list[OperationDescriptor]:
    """Return descriptors for every operation the assistant can request."""

    return [
        # Read operations run immediately.
        OperationDescriptor(
            name="query_context",
            label="Query project context",
            description=(
                "Return the project's overall context: project info, video list, asset statistics and "
                "available art styles. Useful at the start of a conversation."
            ),
            parameters=_object(
                {
                    "includeProjectInfo": {"type": "boolean"},
                    "includeAssets": {"type": "boolean"},
                    "includeVideos": {"type": "boolean"},
                    "includeArtStyles": {"type": "boolean"},
                }
            ),
            category=OperationCategory.READ,
        ),
        OperationDescriptor(
            name="query_assets",
            label="Query assets",
            description="Search the project's asset library, filtering by tags, name or asset type.",
            parameters=_object(
                {
                    "tags": _string_array("Tag filters such as ['character', 'male']."),
                    "name": {"type": "string"},
                    "assetType": {"type": "string", "enum": ["image", "video", "audio", "text"]},
                    "limit": {"type": "integer", "minimum": 1, "maximum": 100},
                }
            ),
            category=OperationCategory.READ,
        ),
        OperationDescriptor(
            name="query_timeline",
            label="Query timeline",
            description="Return the clips and audio tracks currently on the project's timeline.",
            parameters=_object({"cutId": {"type": "string"}}),
            category=OperationCategory.READ,
        ),
        # Generation operations cost credits.
        OperationDescriptor(
            name="generate_image_asset",
            label="Generate images",
            description=(
                "Generate one or more image assets, from scratch or based on existing assets. Each asset "
                "needs an English prompt written as full sentences."
            ),
            parameters=_object(
                {
                    "assets": {
                        "type": "array",
                        "items": _object(
                            {
                                "prompt": {"type": "string"},
                                "name": {"type": "string"},
                                "tags": _string_array("Asset tags."),
                                "sourceAssetIds": _string_array("Assets used for image-to-image generation."),
                                "numImages": {"type": "integer", "minimum": 1, "maximum": 4},
                            }
                        ),
                    }
                },
                required=["assets"],
            ),
            category=OperationCategory.GENERATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="generate_video_asset",
            label="Generate video",
            description=(
                "Generate a video clip. Reference-to-video accepts at most 7 images in total across "
                "elements and image_urls; every element needs at least one reference image. Duration is "
                "the string '5' or '10'; aspect ratio is 16:9, 9:16 or 1:1."
            ),
            parameters=_object(
                {
                    "title": {"type": "string"},
                    "prompt": {"type": "string", "description": "Description of the video's content."},
                    "videoGenerationType": {
                        "type": "string",
                        "enum": ["reference-to-video", "image-to-video"],
                    },
                    "referenceToVideoConfig": _REFERENCE_TO_VIDEO_SCHEMA,
                    "imageToVideoConfig": _IMAGE_TO_VIDEO_SCHEMA,
                    "referenceAssetIds": _string_array("Assets referenced by the configuration."),
                    "tags": _string_array("Video tags."),
                }
            ),
            category=OperationCategory.GENERATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="generate_sound_effect",
            label="Generate sound effect",
            description="Generate a sound effect audio asset from a text prompt.",
            parameters=_object(
                {
                    "prompt": {"type": "string"},
                    "name": {"type": "string"},
                    "duration": {"type": "number", "minimum": 0.5, "maximum": 22},
                    "is_loopable": {"type": "boolean"},
                    "tags": _string_array("Asset tags."),
                },
                required=["prompt"],
            ),
            category=OperationCategory.GENERATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="generate_bgm",
            label="Generate background music",
            description="Generate a background music track.",
            parameters=_object(
                {
                    "prompt": {"type": "string"},
                    "name": {"type": "string"},
                    "genre": {"type": "string"},
                    "mood": {"type": "string"},
                    "instrumental": {"type": "boolean"},
                    "tags": _string_array("Asset tags."),
                },
                required=["prompt"],
            ),
            category=OperationCategory.GENERATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="generate_dialogue",
            label="Generate dialogue",
            description="Synthesize a spoken line with one of the preset voices.",
            parameters=_object(
                {
                    "text": {"type": "string"},
                    "voice_id": {"type": "string"},
                    "emotion": {"type": "string"},
                    "speed": {"type": "number"},
                    "pitch": {"type": "number"},
                    "name": {"type": "string"},
                    "tags": _string_array("Asset tags."),
                },
                required=["text", "voice_id"],
            ),
            category=OperationCategory.GENERATION,
            requires_confirmation=True,
        ),
        # Timeline and asset edits.
        OperationDescriptor(
            name="add_clip",
            label="Add clip",
            description="Insert an asset into the timeline as a clip.",
            parameters=_object(
                {
                    "assetId": {"type": "string"},
                    "insertAt": {"type": "integer", "minimum": 0},
                    "duration": {"type": "number"},
                    "trimStart": {"type": "number"},
                    "trimEnd": {"type": "number"},
                },
                required=["assetId"],
            ),
            category=OperationCategory.MODIFICATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="update_clip",
            label="Update clip",
            description="Move, trim or replace a clip on the timeline.",
            parameters=_object(
                {
                    "clipId": {"type": "string"},
                    "duration": {"type": "number"},
                    "trimStart": {"type": "number"},
                    "trimEnd": {"type": "number"},
                    "moveToPosition": {"type": "integer", "minimum": 0},
                    "replaceWithAssetId": {"type": "string"},
                },
                required=["clipId"],
            ),
            category=OperationCategory.MODIFICATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="remove_clip",
            label="Remove clip",
            description="Remove a clip from the timeline.",
            parameters=_object({"clipId": {"type": "string"}}, required=["clipId"]),
            category=OperationCategory.MODIFICATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="add_audio_track",
            label="Add audio track",
            description="Place an audio asset on an audio track of the timeline.",
            parameters=_object(
                {
                    "assetId": {"type": "string"},
                    "trackIndex": {"type": "integer", "minimum": 0},
                    "startTime": {"type": "number", "minimum": 0},
                    "duration": {"type": "number"},
                },
                required=["assetId"],
            ),
            category=OperationCategory.MODIFICATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="update_asset",
            label="Update assets",
            description="Rename or retag one or more assets.",
            parameters=_object(
                {
                    "updates": {
                        "type": "array",
                        "items": _object(
                            {
                                "assetId": {"type": "string"},
                                "name": {"type": "string"},
                                "tags": _string_array("Replacement tags."),
                            },
                            required=["assetId"],
                        ),
                    }
                },
                required=["updates"],
            ),
            category=OperationCategory.MODIFICATION,
            requires_confirmation=True,
        ),
        OperationDescriptor(
            name="set_project_info",
            label="Update project info",
            description="Update the project's title, description, art style or output settings.",
            parameters=_object(
                {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "styleId": {"type": "string"},
                    "resolution": {"type": "string"},
                    "fps": {"type": "integer"},
                }
            ),
            category=OperationCategory.MODIFICATION,
            requires_confirmation=True,
        ),
        # Deletion.
        OperationDescriptor(
            name="delete_asset",
            label="Delete assets",
            description="Delete one or more assets. Deleted assets cannot be recovered.",
            parameters=_object(
                {"assetIds": _string_array("Assets to delete.")},
                required=["assetIds"],
            ),
            category=OperationCategory.DELETION,
            requires_confirmation=True,
        ),
    ]


CATALOG_NAMES: tuple[str, ...] = tuple(descriptor.name for descriptor in build_catalog())
