# tests/services/test_gemini_service.py
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from ispy.core.config import GEMINI_KEY_PLACEHOLDER, settings
from ispy.core.exceptions import GeminiServiceError
from ispy.models.game import GameObject
from ispy.services import gemini_service
from ispy.services.gemini_service import GeminiService

PNG_DATA_URL = "data:image/png;base64,aGVsbG8="

MODEL_ANSWER = json.dumps([
    {"label": "red cup", "box_2d": [100, 200, 300, 500], "mask": [[0.2, 0.1], [0.5, 0.1], [0.5, 0.3]]},
    {"label": "  ", "mask": [[0.1, 0.1], [0.2, 0.2], [0.1, 0.2]]},
    {"label": "lamp", "mask": [[100, 100], [300, 100], [300, 400]]},
])


@pytest.fixture
def mock_model(mocker):
    """Replaces the google.generativeai module used by the service; returns the model mock."""
    mock_genai = mocker.patch("ispy.services.gemini_service.genai")
    model = MagicMock()
    model.generate_content_async = AsyncMock(return_value=MagicMock(text=MODEL_ANSWER))
    mock_genai.GenerativeModel.return_value = model
    return model


def game_object(label: str = "red cup") -> GameObject:
    return GameObject(id="obj-0", label=label, mask=[(0.1, 0.1), (0.2, 0.1), (0.2, 0.2)], color="hsla(0, 70%, 50%, 0.6)")


# --- Parsing helpers ---

def test_image_to_part_data_url():
    part = gemini_service.image_to_part(PNG_DATA_URL)
    assert part == {"mime_type": "image/png", "data": b"hello"}


def test_image_to_part_bare_base64_defaults_to_jpeg():
    part = gemini_service.image_to_part("aGVsbG8=")
    assert part["mime_type"] == "image/jpeg"
    assert part["data"] == b"hello"


def test_image_to_part_rejects_garbage():
    with pytest.raises(ValueError):
        gemini_service.image_to_part("data:image/png;base64,not base64!")


def test_normalize_mask_rescales_thousand_grid():
    assert gemini_service.normalize_mask([[100, 250], [500, 1000]]) == [[0.1, 0.25], [0.5, 1.0]]


def test_normalize_mask_leaves_slight_overshoot_alone():
    mask = [[0.1, 0.1], [1.01, 0.1], [1.01, 0.9], [0.1, 0.9]]
    assert gemini_service.normalize_mask(mask) == mask


def test_slight_overshoot_is_clamped_not_shrunk():
    objects = gemini_service.parse_object_list(
        json.dumps([{"label": "poster", "mask": [[0.1, 0.1], [1.01, 0.1], [1.01, 0.9], [0.1, 0.9]]}]), "detection"
    )
    poster = GameObject(id="obj-0", label="poster", mask=objects[0].mask, color="hsla(0, 70%, 50%, 0.6)")
    assert poster.mask == [(0.1, 0.1), (1.0, 0.1), (1.0, 0.9), (0.1, 0.9)]


def test_normalize_mask_drops_malformed_points():
    assert gemini_service.normalize_mask([[0.1, 0.2], [0.3], "x", [0.4, "y"], [0.5, 0.6]]) == [[0.1, 0.2], [0.5, 0.6]]
    assert gemini_service.normalize_mask(None) == []


def test_parse_object_list():
    objects = gemini_service.parse_object_list(MODEL_ANSWER, "detection")

    assert [o.label for o in objects] == ["red cup", "lamp"]
    box = objects[0].bounding_box
    assert (box.x, box.y) == pytest.approx((0.2, 0.1))
    assert (box.width, box.height) == pytest.approx((0.3, 0.2))
    assert objects[1].bounding_box is None
    assert objects[1].mask[0] == pytest.approx((0.1, 0.1))


@pytest.mark.parametrize("text", ["", "   ", None, '{"label": "cup"}'])
def test_parse_object_list_empty_or_not_a_list(text):
    assert gemini_service.parse_object_list(text, "detection") == []


def test_parse_object_list_invalid_json():
    with pytest.raises(json.JSONDecodeError):
        gemini_service.parse_object_list("[{not json", "detection")


# --- Service calls ---

@pytest.mark.asyncio
async def test_detect_objects(mock_model):
    service = GeminiService(api_key="test-key", model_name="test-model")
    objects = await service.detect_objects(PNG_DATA_URL)

    assert [o.label for o in objects] == ["red cup", "lamp"]
    args, kwargs = mock_model.generate_content_async.call_args
    assert args[0][0] == {"mime_type": "image/png", "data": b"hello"}
    assert kwargs["generation_config"]["response_mime_type"] == "application/json"
    assert settings.LABEL_LANGUAGE in args[0][1]


@pytest.mark.asyncio
async def test_guess_from_description_includes_clue(mock_model):
    service = GeminiService(api_key="test-key")
    candidates = await service.guess_from_description(PNG_DATA_URL, "is red")

    assert [c.label for c in candidates] == ["red cup", "lamp"]
    prompt = mock_model.generate_content_async.call_args.args[0][1]
    assert '"is red"' in prompt


@pytest.mark.asyncio
async def test_detect_objects_api_failure(mock_model):
    mock_model.generate_content_async.side_effect = RuntimeError("quota exceeded")
    service = GeminiService(api_key="test-key")

    with pytest.raises(GeminiServiceError) as exc_info:
        await service.detect_objects(PNG_DATA_URL)
    assert exc_info.value.stage == "detection"
    assert "quota exceeded" in exc_info.value.message


@pytest.mark.asyncio
async def test_guess_invalid_json_is_a_service_error(mock_model):
    mock_model.generate_content_async.return_value = MagicMock(text="[{oops")
    service = GeminiService(api_key="test-key")

    with pytest.raises(GeminiServiceError) as exc_info:
        await service.guess_from_description(PNG_DATA_URL, "is red")
    assert exc_info.value.stage == "guessing"


@pytest.mark.asyncio
async def test_missing_api_key(mock_model):
    service = GeminiService(api_key=GEMINI_KEY_PLACEHOLDER)
    with pytest.raises(GeminiServiceError) as exc_info:
        await service.detect_objects(PNG_DATA_URL)
    assert exc_info.value.stage == "detection"
    mock_model.generate_content_async.assert_not_called()


@pytest.mark.asyncio
async def test_describe_object(mock_model):
    mock_model.generate_content_async.return_value = MagicMock(text="  is red and round \n")
    service = GeminiService(api_key="test-key")

    assert await service.describe_object(PNG_DATA_URL, game_object()) == "is red and round"
    prompt = mock_model.generate_content_async.call_args.args[0][1]
    assert '"red cup"' in prompt


@pytest.mark.asyncio
async def test_describe_object_falls_back_on_error(mock_model):
    mock_model.generate_content_async.side_effect = RuntimeError("blocked")
    service = GeminiService(api_key="test-key")
    assert await service.describe_object(PNG_DATA_URL, game_object()) == settings.DESCRIPTION_FALLBACK


@pytest.mark.asyncio
async def test_describe_object_falls_back_on_empty_text(mock_model):
    mock_model.generate_content_async.return_value = MagicMock(text="   ")
    service = GeminiService(api_key="test-key")
    assert await service.describe_object(PNG_DATA_URL, game_object()) == settings.DESCRIPTION_FALLBACK


@pytest.mark.asyncio
async def test_describe_object_without_key_falls_back():
    service = GeminiService(api_key=GEMINI_KEY_PLACEHOLDER)
    assert await service.describe_object(PNG_DATA_URL, game_object()) == settings.DESCRIPTION_FALLBACK
