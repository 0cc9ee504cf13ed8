# ispy/services/gemini_service.py
import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Optional

import google.generativeai as genai

from ispy.core.config import GEMINI_KEY_PLACEHOLDER, settings
from ispy.core.exceptions import GeminiServiceError
from ispy.models.game import BoundingBox, DetectedObject, GameObject

logger = logging.getLogger("ispy.services.gemini_service")  # Logger for this module

OBJECT_LIST_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "label": {"type": "STRING", "description": "A short, descriptive label for the object."},
            "box_2d": {
                "type": "ARRAY",
                "description": "Bounding box as [y_min, x_min, y_max, x_max] on a 0-1000 grid.",
                "items": {"type": "NUMBER"},
            },
            "mask": {
                "type": "ARRAY",
                "description": "Polygon outlining the object: a list of [x, y] pairs of normalized (0-1) coordinates.",
                "items": {"type": "ARRAY", "items": {"type": "NUMBER"}},
            },
        },
        "required": ["label", "mask"],
    },
}

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)
DEFAULT_MIME_TYPE = "image/jpeg"
THOUSAND_GRID_THRESHOLD = 2.0  # Larger coordinates mean the mask is on the 0-1000 grid


def image_to_part(image: str) -> Dict[str, Any]:
    """Turns a data URL (or bare base64) into an inline image part for the Gemini request."""
    match = DATA_URL_RE.match(image.strip())
    mime_type, payload = (match.group("mime"), match.group("data")) if match else (DEFAULT_MIME_TYPE, image.strip())
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Image is not valid base64: {e}") from e
    return {"mime_type": mime_type, "data": data}


def normalize_mask(raw_mask: Any) -> List[List[float]]:
    """
    Keeps well-formed [x, y] pairs. The model sometimes answers on a 0-1000 grid
    instead of 0-1; such masks are rescaled. Slight overshoot past 1.0 is left for
    GameObject to clamp.
    """
    if not isinstance(raw_mask, list):
        return []
    points = []
    for point in raw_mask:
        if isinstance(point, (list, tuple)) and len(point) >= 2 and all(isinstance(v, (int, float)) for v in point[:2]):
            points.append([float(point[0]), float(point[1])])
    if points and max(max(abs(x), abs(y)) for x, y in points) > THOUSAND_GRID_THRESHOLD:
        points = [[x / 1000.0, y / 1000.0] for x, y in points]
    return points


def parse_object_list(text: Optional[str], context: str) -> List[DetectedObject]:
    """Parses the model's JSON answer into DetectedObjects. Raises ValueError on malformed JSON."""
    if not text or not text.strip():
        logger.error(f"Received empty text from Gemini for {context}.")
        return []
    result = json.loads(text)
    if not isinstance(result, list):
        logger.warning(f"Parsed JSON for {context} is not a list: {type(result).__name__}")
        return []

    objects = []
    for entry in result:
        if not isinstance(entry, dict):
            continue
        label = str(entry.get("label", "")).strip()
        if not label:
            continue
        bounding_box = None
        box = entry.get("box_2d")
        if isinstance(box, list) and len(box) == 4 and all(isinstance(v, (int, float)) for v in box):
            # box_2d is [y_min, x_min, y_max, x_max] on a 0-1000 grid
            y_min, x_min, y_max, x_max = [v / 1000.0 for v in box]
            bounding_box = BoundingBox(x=x_min, y=y_min, width=max(0.0, x_max - x_min), height=max(0.0, y_max - y_min))
        objects.append(DetectedObject(label=label, mask=normalize_mask(entry.get("mask")), bounding_box=bounding_box))
    return objects


class GeminiService:
    """
    The AI collaborator: object detection, clue-based guessing and object descriptions,
    all answered by a Gemini vision model.
    """

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = api_key or settings.GEMINI_API_KEY
        self.model_name = model_name or settings.GEMINI_VISION_MODEL
        self._model = None

    def _get_model(self, stage: str):
        if self._model is not None:
            return self._model
        if not self.api_key or self.api_key == GEMINI_KEY_PLACEHOLDER:
            logger.error("GEMINI_API_KEY is not configured. Cannot call Gemini.")
            raise GeminiServiceError(stage, "Gemini API key not configured")
        try:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        except Exception as e:
            logger.exception(f"Error configuring Gemini client: {e}")
            raise GeminiServiceError(stage, f"Gemini client configuration error: {e}") from e
        return self._model

    async def _generate_object_list(self, stage: str, image: str, prompt: str) -> List[DetectedObject]:
        model = self._get_model(stage)
        try:
            response = await model.generate_content_async(
                [image_to_part(image), prompt],
                generation_config={"response_mime_type": "application/json", "response_schema": OBJECT_LIST_SCHEMA},
            )
            return parse_object_list(response.text, stage)
        except json.JSONDecodeError as e:
            logger.error(f"Error decoding JSON from Gemini during {stage}: {e}")
            raise GeminiServiceError(stage, f"JSON decode error: {e}") from e
        except Exception as e:
            logger.exception(f"Gemini call failed during {stage}: {e}")
            raise GeminiServiceError(stage, str(e)) from e

    async def detect_objects(self, image: str) -> List[DetectedObject]:
        prompt = (
            "Give the segmentation masks for all objects. Output a JSON list of segmentation masks where each "
            "entry contains the 2D bounding box in the key box_2d, the segmentation mask in key mask, and the "
            f"text label in {settings.LABEL_LANGUAGE} in the key label. Use descriptive labels in "
            f"{settings.LABEL_LANGUAGE}. Give every object a distinct label."
        )
        objects = await self._generate_object_list("detection", image, prompt)
        logger.info(f"Gemini detected {len(objects)} objects.")
        return objects

    async def guess_from_description(self, image: str, clue: str) -> List[DetectedObject]:
        prompt = (
            f'You are playing "I spy with my little eye". The player\'s clue is: "{clue}". '
            "Analyse the picture and identify every object that matches this clue. Return only the masks of the "
            f"matching objects, labelled in {settings.LABEL_LANGUAGE} exactly as you would label them when listing "
            "all objects, ordered from most to least likely."
        )
        candidates = await self._generate_object_list("guessing", image, prompt)
        logger.info(f"Gemini proposed {len(candidates)} candidates for clue '{clue}'.")
        return candidates

    async def describe_object(self, image: str, game_object: GameObject) -> str:
        """Short clue for the object that does not name it. Falls back to a fixed phrase on any failure."""
        prompt = (
            f'You are playing "I spy with my little eye" and have picked an object. The picked object is '
            f'"{game_object.label}". Write a short, unambiguous description of this object based on its visual '
            "features (e.g. color, shape, texture) without naming it. Answer only with the descriptive part of "
            f'the sentence, in {settings.LABEL_LANGUAGE}. Example: "is red and round".'
        )
        try:
            model = self._get_model("description")
            response = await model.generate_content_async([image_to_part(image), prompt])
            text = (response.text or "").strip()
        except Exception as e:
            logger.exception(f"Error generating description for '{game_object.label}': {e}")
            return settings.DESCRIPTION_FALLBACK
        if not text:
            logger.warning(f"Gemini returned an empty description for '{game_object.label}'.")
            return settings.DESCRIPTION_FALLBACK
        return text

