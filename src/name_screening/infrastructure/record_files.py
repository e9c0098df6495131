import csv
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from name_screening.domain.exceptions import ValidationError

NAME_COLUMN = "full_name"
ID_COLUMN = "identification"


class RecordFileReader(Protocol):
    def read(self, path: Path) -> list[dict[str, Any]]:
        """파일에서 검색 레코드 목록을 읽습니다. 각 레코드는 full_name을 반드시 포함합니다."""
        ...


class CsvRecordFileReader:
    """`full_name`, `identification` 열을 가진 CSV 파일을 읽습니다."""

    def __init__(self, encoding: str = "utf-8-sig"):
        self.encoding = encoding

    def read(self, path: Path) -> list[dict[str, Any]]:
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"file not found: {path}")

        with path.open(newline="", encoding=self.encoding) as f:
            reader = csv.DictReader(f)
            headers = {
                (name or "").strip().lower(): name for name in reader.fieldnames or []
            }
            if NAME_COLUMN not in headers:
                raise ValidationError(
                    f"{path.name}: missing required column '{NAME_COLUMN}'"
                )

            records = []
            skipped = 0
            for row in reader:
                full_name = (row.get(headers[NAME_COLUMN]) or "").strip()
                if not full_name:
                    skipped += 1
                    continue
                identification = ""
                if ID_COLUMN in headers:
                    identification = (row.get(headers[ID_COLUMN]) or "").strip()
                records.append(
                    {
                        "full_name": full_name,
                        "identification": identification or None,
                        "original_row_data": dict(row),
                    }
                )

        logger.debug(
            "CSV 레코드 읽기 완료",
            file=path.name,
            records=len(records),
            skipped=skipped,
            event_name="record_file_read",
        )
        return records
