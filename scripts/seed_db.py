from __future__ import annotations

import os
import sys
from pathlib import Path

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from dotenv import load_dotenv

from dance_school.config import load_settings
from dance_school.container import build_container
from dance_school.core.exceptions import ValidationError

DEMO_STUDENTS = [
    ("ana@example.com", "Ana", "Lopez"),
    ("ben@example.com", "Ben", "Ortiz"),
    ("cleo@example.com", "Cleo", "Park"),
]


def main() -> None:
    load_dotenv(override=False)
    settings = load_settings()
    container = build_container(settings=settings)

    admin_email = os.getenv("SEED_ADMIN_EMAIL", "admin@example.com")
    admin_password = os.getenv("SEED_ADMIN_PASSWORD", "admin123")
    try:
        container.user_service.create_admin(email=admin_email, password=admin_password)
        print(f"Created admin {admin_email}")
    except ValidationError as e:
        print(f"Skip admin: {e}")

    for email, first, last in DEMO_STUDENTS:
        try:
            _, student = container.user_service.provision_student(
                email=email,
                password="student123",
                profile={"first_name": first, "last_name": last},
            )
            print(f"Created student {student.full_name} ({student.student_id})")
        except ValidationError as e:
            print(f"Skip {email}: {e}")

    print(f"OK: Seeded store ({settings.DOCUMENT_STORE})")


if __name__ == "__main__":
    main()
