"""
Constants used internally by the neural style transfer package.

These are implementation-level values that should not be overridden
via config files or CLI arguments.
"""

# Identifier of the built-in VGG19 description derived from torchvision
TORCHVISION_VGG19_ID = "torchvision:vgg19"

# ImageNet statistics used by torchvision.models, in the 0-1 range.
# See: https://pytorch.org/vision/stable/models.html#classification
IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]

# Mean pixel values are stored in 0-255 scale in model descriptions
PIXEL_SCALE = 255.0

# Native VGG layer geometry
CONV_STRIDE = 1
CONV_PADDING = 1
DEFAULT_POOL_SIZE = (2, 2)
DEFAULT_POOL_STRIDE = (2, 2)

# Image processing constants
COLOR_MODE_RGB = "RGB"
MIN_CHANNELS = 3

# Shape used for broadcasting per-channel values over NCHW tensors
CHANNEL_VIEW_SHAPE = (1, 3, 1, 1)

# Loss logging
CSV_LOGGING_RECOMMENDED_STEPS = 2000
