from matrixci.kernel.utils.paths import safe_name
from matrixci.kernel.utils.templates import placeholders, render
from matrixci.kernel.utils.timer import Timer, timed

__all__ = ["Timer", "placeholders", "render", "safe_name", "timed"]
