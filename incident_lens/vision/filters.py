import numpy as np


MIN_CONTRAST = 0.0
MAX_CONTRAST = 300.0


def apply_contrast(frame: np.ndarray, percent: float) -> np.ndarray:
    """
    Same mapping as a CSS `contrast(N%)` filter: each channel value v becomes
    (v - 128) * N/100 + 128, saturated to 0..255. 100% returns an unchanged copy.
    """
    percent = min(MAX_CONTRAST, max(MIN_CONTRAST, float(percent)))
    if percent == 100.0:
        return frame.copy()

    alpha = percent / 100.0
    adjusted = (frame.astype(np.float32) - 128.0) * alpha + 128.0
    return np.clip(np.rint(adjusted), 0, 255).astype(np.uint8)
