"""pwaforge: prompt-to-PWA generation with a brokered demo credential.

  - Demo credential broker (device registration, HMAC, AES envelope)
  - Resilient generation pipeline with retry and tiered response parsing
  - Staged bundle materialization with manifest and service-worker repair
  - Loopback HTTP server per bundle on a deterministic port
"""

__version__ = "0.1.0"
__description__ = "Generate and serve Progressive Web Apps from a prompt"

from pwaforge.core.pipeline import GenerationPipeline
from pwaforge.core.server import ServerRegistry

__all__ = ["GenerationPipeline", "ServerRegistry", "__version__"]
