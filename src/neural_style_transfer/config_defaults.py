"""Shared default values for user-facing configuration settings."""
from neural_style_transfer.constants import TORCHVISION_VGG19_ID
from neural_style_transfer.type_defs import InitMethod

# Optimization
DEFAULT_STEPS = 500
DEFAULT_LEARNING_RATE = 0.03
DEFAULT_BETA1 = 0.9
DEFAULT_BETA2 = 0.999
DEFAULT_EPS = 1e-8
DEFAULT_INIT_METHOD: InitMethod = "random"
DEFAULT_SEED = 0
DEFAULT_LOG_EVERY = 50

# Losses. Indices address the feature list, which holds one entry per
# convolution and one per activation: 1 = relu1_1, 5 = relu2_1,
# 9 = relu3_1, 17 = relu4_1, 19 = relu4_2, 25 = relu5_1.
DEFAULT_CONTENT_LAYER = 19
DEFAULT_CONTENT_WEIGHT = 1.0
DEFAULT_STYLE_LAYERS: tuple[int, ...] = (1, 5, 9, 17, 25)
DEFAULT_STYLE_WEIGHTS: tuple[float, ...] = (1e3, 1e3, 1e3, 1e3, 1e3)
DEFAULT_TV_WEIGHT = 1e-2

# Images
DEFAULT_OUTPUT_SIZE = 512
DEFAULT_STYLE_SIZE = 512

# Model
DEFAULT_MODEL = TORCHVISION_VGG19_ID
DEFAULT_TRUNCATE_AT = "fc6"

# Hardware
DEFAULT_DEVICE = "cuda"

# Output
DEFAULT_OUTPUT_DIR = "out"
