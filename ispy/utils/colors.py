# ispy/utils/colors.py
from typing import List

SATURATION = 70
LIGHTNESS = 50
ALPHA = 0.6

def generate_mask_colors(count: int) -> List[str]:
    """Distinct, semi-transparent HSLA colors, hues spread evenly around the wheel."""
    colors = []
    for i in range(count):
        hue = (i * 360) / (count + 1)
        colors.append(f"hsla({hue:g}, {SATURATION}%, {LIGHTNESS}%, {ALPHA})")
    return colors
