# Import all handlers so they register themselves.
from . import concerns  # noqa: F401
from . import conversation  # noqa: F401
from . import followup  # noqa: F401
