import sys
import os
from pathlib import Path

# Ensure project root is on sys.path for `import app.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Default: mock analysis and in-memory store unless a test opts in
os.environ.setdefault("AI_PROVIDER_ANALYSIS", "mock")
os.environ.setdefault("STORE_PROVIDER", "memory")
for _key in ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "ELEVENLABS_API_KEY", "SERVER_SECRET"):
    os.environ.pop(_key, None)
