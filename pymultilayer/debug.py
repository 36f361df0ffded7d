import logging
from typing import Optional

import numpy

from . import core


def check_finite(arr: core.Array, logger: Optional[logging.Logger] = None) -> bool:
    finite = numpy.isfinite(arr.ma)
    if not finite.all():
        tiling = arr.grid.domain.tiling
        logger = logger or logging.getLogger()
        logger.error(
            "%s not finite in %i cells of subdomain %i,%i"
            % (arr.name, (~finite).sum(), tiling.irow, tiling.icol)
        )
        return False
    return True
