# livedetect/services/report_service.py
import pandas as pd
from typing import List, Dict

def make_latency_csv(samples: List[float], snapshot: Dict) -> bytes:
    """Latency window as CSV, oldest sample first, with the snapshot figures repeated on each row."""
    df = pd.DataFrame({"sample_index": range(len(samples)), "latency_ms": samples})
    for key in ("median_latency_ms", "p95_latency_ms", "fps", "sample_count"):
        df[key] = snapshot.get(key)
    return df.to_csv(index=False).encode("utf-8")
