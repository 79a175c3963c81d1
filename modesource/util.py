"""Small miscellaneous utility functions."""
import logging
import os
from typing import Optional, Tuple, Union

import numpy as np

import modesource


def setup_logging(save_folder: Optional[str] = None,
                  log_level: int = logging.INFO):
    """Setup logging.

    This will setup logging to stdout and, if `save_folder` is given, to a
    `modesource.log` file within `save_folder`.

    Args:
        save_folder: Folder to save logs.
        log_level: Default logging level.

    Returns:
        The log file handler, or `None` if no file is written.
    """
    logging.basicConfig(format=modesource.LOG_FORMAT)
    logging.getLogger("").setLevel(log_level)

    if save_folder is None:
        return None

    os.makedirs(save_folder, exist_ok=True)
    log_file_handler = logging.FileHandler(
        os.path.join(save_folder, "modesource.log"))
    log_file_handler.setFormatter(logging.Formatter(modesource.LOG_FORMAT))
    logging.getLogger("").addHandler(log_file_handler)
    return log_file_handler


def make_slice(
        x: Optional[Union[int, str]] = None,
        y: Optional[Union[int, str]] = None,
        z: Optional[Union[int, str]] = None,
        shape: Tuple[int, int, int] = None,
) -> Tuple:
    """Creates a 3D `slice` object selecting single planes.

    `arr[make_slice(x=3)]` is `arr[3:4, :, :]`; `"center"` selects the middle
    plane of `shape`.
    """
    slicer = [slice(None), slice(None), slice(None)]
    for axis, index in enumerate((x, y, z)):
        if index is None:
            continue
        if index == "center":
            index = shape[axis] // 2
        slicer[axis] = slice(index, index + 1)
    return tuple(slicer)


def visualize_current(J: np.ndarray,
                      x: Optional[Union[int, str]] = None,
                      y: Optional[Union[int, str]] = None,
                      z: Optional[Union[int, str]] = None,
                      title: str = "J") -> None:
    """Plots real and imaginary parts of every component of a vector field.

    This function is meant as a quick utility to look at injected currents or
    radiated fields when debugging.

    Args:
        J: A numpy array with dimensions `(3, num_x, num_y, num_z)`.
        x: If set, the field array is sliced along the given x-index.
        y: If set, the field array is sliced along the given y-index.
        z: If set, the field array is sliced along the given z-index.
        title: Prefix of the subplot titles.
    """
    import matplotlib.pyplot as plt

    slicer = make_slice(x=x, y=y, z=z, shape=J.shape[1:])

    plt.figure(figsize=(10, 5))
    for i, comp_name in zip(range(3), "xyz"):
        plt.subplot(2, 3, i + 1)
        plt.imshow(np.real(J[i][slicer].squeeze()))
        plt.colorbar()
        plt.title("Re[{}{}]".format(title, comp_name))

        plt.subplot(2, 3, i + 4)
        plt.imshow(np.imag(J[i][slicer].squeeze()))
        plt.colorbar()
        plt.title("Im[{}{}]".format(title, comp_name))
    plt.show()
