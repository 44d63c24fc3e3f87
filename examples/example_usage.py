"""Example: drive the import pipeline through the service layer (no Flask).

Run `scripts/init_db.py` and `scripts/seed_db.py` first; the demo data
has a terminal GATE-01 with four device users.
"""

import importlib

from config import get_settings_module

from src.attendance_pipeline.attendance_pipeline.container import build_container

LOG = b"""user_id,name,timestamp
195,Budi Santoso,2024-01-15 06:55:00
195,Budi Santoso,2024-01-15 14:02:00
101,AHMAD FAUZI,2024-01-15 07:31:00
"""


def main():
    settings = importlib.import_module(get_settings_module())
    container = build_container(db_config=settings.DB_CONFIG)

    print(container.reconciler.generate_suggestions().to_dict())
    for entry in container.reconciler.list_unmapped():
        if entry.suggestion and entry.suggestion.student_nis:
            print(container.mapping_service.bulk_verify([entry.suggestion.suggestion_id]).to_dict())

    preview = container.import_service.preview(filename="gate.csv", content=LOG, device_code="GATE-01")
    print(preview.to_dict()["summary"])

    result = container.import_service.commit(filename="gate.csv", content=LOG, device_code="GATE-01")
    print(result.to_dict())


if __name__ == "__main__":
    main()
