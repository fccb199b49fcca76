# pose_capture/capture_engine/processing/one_euro_filter.py
import numpy as np

class OneEuroFilter:
    """
    Vectorized One-Euro filter over an array of keypoint positions.
    The filter restarts whenever the array shape changes or `reset()` is called.
    """
    def __init__(self, min_cutoff=1.0, beta=0.05, d_cutoff=1.0):
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.d_cutoff = d_cutoff
        self.reset()

    def reset(self):
        self.x_prev = None
        self.dx_prev = None
        self.t_prev = None

    @staticmethod
    def _alpha(te, cutoff):
        r = 2 * np.pi * cutoff * te
        return r / (r + 1)

    def __call__(self, x, t):
        x = np.asarray(x, dtype=float)
        if self.t_prev is None or self.x_prev.shape != x.shape:
            self.x_prev = x
            self.dx_prev = np.zeros_like(x)
            self.t_prev = t
            return x

        te = t - self.t_prev
        if te < 1e-6:
            return self.x_prev

        alpha_d = self._alpha(te, self.d_cutoff)
        dx = (x - self.x_prev) / te
        self.dx_prev = alpha_d * dx + (1 - alpha_d) * self.dx_prev

        # Cutoff rises with speed: slow motion is smoothed harder than fast motion.
        cutoff = self.min_cutoff + self.beta * np.abs(self.dx_prev)
        alpha = self._alpha(te, cutoff)
        self.x_prev = alpha * x + (1 - alpha) * self.x_prev
        self.t_prev = t
        return self.x_prev
