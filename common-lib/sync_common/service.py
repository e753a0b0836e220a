import logging

from fastapi.params import Depends

LOG = logging.getLogger(__name__)


class Service:
    """Base class for all services. Makes the service a singleton."""

    instance = None

    def __init_subclass__(cls, **kwargs):
        """Ensure instance is initialized. Fail creation of the new instances."""
        super().__init_subclass__(**kwargs)
        cls.instance = None
        original_init = cls.__init__

        def wrapped_init(self, *args, **kwargs):
            LOG.debug("Initializing service %s", cls.__name__)
            if cls.instance is not None:
                raise RuntimeError(f"{cls.__name__} is already initialized.")
            cls.instance = self
            original_init(self, *args, **kwargs)

        cls.__init__ = wrapped_init

    @classmethod
    def _instance(cls):
        if cls.instance is None:
            raise RuntimeError(f"{cls.__name__} is not initialized.")
        return cls.instance

    @classmethod
    def reset(cls):
        """Forget the current instance, so a new one can be created (app shutdown, tests)."""
        cls.instance = None

    @classmethod
    def dep(cls):
        """Returns a dependency for the service."""
        return Depends(cls._instance)
