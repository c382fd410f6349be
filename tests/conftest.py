from __future__ import annotations

from typing import Any

import pytest


@pytest.fixture
def patient_sheets() -> dict[str, list[dict[str, Any]]]:
    return {
        "삼성화재": [
            {"병명": "고혈압", "입원유무": "예", "수술유무": "아니오"},
            {"병명": "당뇨", "입원유무": "아니오", "수술유무": "아니오"},
            {"병명": "고혈압성 심장병", "입원유무": "예", "수술유무": "예"},
        ],
        "현대해상": [
            {"병명": "갑상선염", "입원유무": "아니오", "수술유무": "아니오"},
            {"병명": "고혈압", "입원유무": "아니오", "수술유무": "아니오", "특이사항1": "약 복용"},
            {"병명": "천식", "입원유무": "예", "수술유무": "아니오"},
            {"병명": "위염", "입원유무": "아니오", "수술유무": "아니오"},
            {"병명": "디스크", "입원유무": "예", "수술유무": "예", "특이사항2": "고혈압 동반"},
        ],
    }
