"""
Model-specific parameter constraints.

Static tables describing which sizes, qualities, counts and options each image
and video model accepts, plus validators that report every violation at once.
"""

from typing import Any, Dict, List, Mapping, Optional

IMAGE_MODEL_CONSTRAINTS: Dict[str, Dict[str, Any]] = {
    "dall-e-2": {
        "sizes": ["256x256", "512x512", "1024x1024"],
        "prompt_max_length": 1000,
        "quality": ["standard"],
        "n": (1, 10),
        "supports_edit": True,
        "supports_variation": True,
        "response_formats": ["url", "b64_json"],
        "image_max_size": 4 * 1024 * 1024,
        "edit_max_images": 1,
    },
    "dall-e-3": {
        "sizes": ["1024x1024", "1792x1024", "1024x1792"],
        "prompt_max_length": 4000,
        "quality": ["standard", "hd"],
        "n": (1, 1),
        "styles": ["vivid", "natural"],
        "supports_edit": False,
        "supports_variation": False,
        "response_formats": ["url", "b64_json"],
    },
    "gpt-image-1": {
        "sizes": ["1024x1024", "1536x1024", "1024x1536", "auto"],
        "prompt_max_length": 32000,
        "quality": ["auto", "high", "medium", "low"],
        "n": (1, 10),
        "backgrounds": ["auto", "transparent", "opaque"],
        "moderation": ["auto", "low"],
        "output_formats": ["png", "jpeg", "webp"],
        "output_compression": (0, 100),
        "input_fidelity": ["high", "low"],
        "supports_edit": True,
        "supports_variation": False,
        "image_max_size": 50 * 1024 * 1024,
        "edit_max_images": 16,
    },
}
# gpt-image-1.5 shares the gpt-image-1 parameter surface
IMAGE_MODEL_CONSTRAINTS["gpt-image-1.5"] = dict(IMAGE_MODEL_CONSTRAINTS["gpt-image-1"])

_SORA_CONSTRAINTS: Dict[str, Any] = {
    "sizes": ["720x1280", "1280x720", "1024x1792", "1792x1024"],
    "seconds": [4, 8, 12],
    "quality": ["standard"],
    "prompt_max_length": 10000,
    "poll_interval_seconds": 10,
    "timeout_seconds": 1200,
    "variants": ["video", "thumbnail", "spritesheet"],
    "supports_input_reference": True,
    "supports_remix": True,
    "video_max_size": 100 * 1024 * 1024,
    "image_reference_max_size": 50 * 1024 * 1024,
    "image_reference_formats": ["image/jpeg", "image/png", "image/webp"],
}

VIDEO_MODEL_CONSTRAINTS: Dict[str, Dict[str, Any]] = {
    "sora-2": dict(_SORA_CONSTRAINTS),
    "sora-2-pro": dict(_SORA_CONSTRAINTS),
}


class ParameterValidationError(ValueError):
    """Raised when request parameters violate a model's constraints."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            "Parameter validation failed:\n  - " + "\n  - ".join(self.errors)
        )


def is_gpt_image_model(model: str) -> bool:
    return model.startswith("gpt-image")


def get_image_constraints(model: str) -> Optional[Dict[str, Any]]:
    return IMAGE_MODEL_CONSTRAINTS.get(model)


def get_video_constraints(model: str) -> Optional[Dict[str, Any]]:
    return VIDEO_MODEL_CONSTRAINTS.get(model)


def _check_choice(
    errors: List[str],
    params: Mapping[str, Any],
    key: str,
    allowed: Optional[List[str]],
    model: str,
    label: str = "options",
) -> None:
    value = params.get(key)
    if value is None or allowed is None:
        return
    if value not in allowed:
        errors.append(
            f'Invalid {key} "{value}" for {model}. Valid {label}: {", ".join(allowed)}'
        )


def _check_range(
    errors: List[str], params: Mapping[str, Any], key: str, bounds, model: str
) -> None:
    value = params.get(key)
    if value is None or bounds is None:
        return
    low, high = bounds
    if not low <= value <= high:
        errors.append(f'Parameter "{key}" must be between {low} and {high} for {model}')


def validate_image_params(model: str, params: Mapping[str, Any]) -> List[str]:
    """
    Validate image parameters against a model's constraints.

    Returns:
        List[str]: All violations found; empty when the parameters are valid
    """
    constraints = IMAGE_MODEL_CONSTRAINTS.get(model)
    if constraints is None:
        return [f"Unknown model: {model}"]

    errors: List[str] = []
    prompt = params.get("prompt")
    if prompt and len(prompt) > constraints["prompt_max_length"]:
        errors.append(
            f"Prompt exceeds maximum length of {constraints['prompt_max_length']} "
            f"characters for {model}"
        )

    _check_choice(errors, params, "size", constraints["sizes"], model, "sizes")
    _check_choice(errors, params, "quality", constraints.get("quality"), model)
    _check_range(errors, params, "n", constraints["n"], model)
    _check_choice(errors, params, "style", constraints.get("styles"), model, "styles")
    _check_choice(errors, params, "background", constraints.get("backgrounds"), model)
    _check_choice(errors, params, "moderation", constraints.get("moderation"), model)
    _check_choice(
        errors, params, "output_format", constraints.get("output_formats"), model, "formats"
    )
    _check_choice(
        errors,
        params,
        "response_format",
        constraints.get("response_formats"),
        model,
        "formats",
    )
    _check_choice(
        errors, params, "input_fidelity", constraints.get("input_fidelity"), model
    )
    _check_range(
        errors, params, "output_compression", constraints.get("output_compression"), model
    )
    return errors


def validate_video_params(model: str, params: Mapping[str, Any]) -> List[str]:
    """
    Validate video parameters against a model's constraints.

    Returns:
        List[str]: All violations found; empty when the parameters are valid
    """
    constraints = VIDEO_MODEL_CONSTRAINTS.get(model)
    if constraints is None:
        return [f"Unknown video model: {model}"]

    errors: List[str] = []
    prompt = params.get("prompt")
    if prompt and len(prompt) > constraints["prompt_max_length"]:
        errors.append(
            f"Prompt exceeds maximum length of {constraints['prompt_max_length']} "
            f"characters for {model}"
        )

    _check_choice(errors, params, "size", constraints["sizes"], model, "sizes")

    seconds = params.get("seconds")
    if seconds is not None:
        try:
            seconds_num = int(seconds)
        except (TypeError, ValueError):
            seconds_num = None
        if seconds_num not in constraints["seconds"]:
            valid = ", ".join(str(s) for s in constraints["seconds"])
            errors.append(
                f'Invalid duration "{seconds}" for {model}. '
                f"Valid durations: {valid} seconds"
            )

    _check_choice(errors, params, "quality", constraints["quality"], model)
    _check_choice(errors, params, "variant", constraints["variants"], model, "variants")
    return errors
