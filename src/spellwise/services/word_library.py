"""Word library: static word -> phonics group and difficulty lookup."""
import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from sqlalchemy.orm import Session

from spellwise.models.models import LibraryWord
from spellwise.models.progress_models import WordEntry

logger = logging.getLogger(__name__)


def normalize_word(word: str) -> str:
    """Canonical form of a word: trimmed and lower-cased."""
    return word.strip().lower()


class WordLibrary:
    """Read-only catalog of words tagged with phonics group and difficulty."""

    def __init__(self, entries: Iterable[WordEntry]):
        """Build the lookup indexes. Later duplicates replace earlier ones."""
        self._entries: Dict[str, WordEntry] = {}
        for entry in entries:
            key = normalize_word(entry.word)
            if key in self._entries:
                logger.warning(f"Duplicate library word '{entry.word}', keeping the last entry")
            self._entries[key] = entry

        self._groups_by_level: Dict[int, Set[str]] = defaultdict(set)
        self._group_levels: Dict[str, int] = {}
        self._words_by_group: Dict[str, List[WordEntry]] = defaultdict(list)
        for entry in self._entries.values():
            self._groups_by_level[entry.difficulty_level].add(entry.phonics_group)
            self._words_by_group[entry.phonics_group].append(entry)
            current = self._group_levels.get(entry.phonics_group)
            if current is None or entry.difficulty_level < current:
                self._group_levels[entry.phonics_group] = entry.difficulty_level

    @classmethod
    def from_entries(cls, entries: Iterable[WordEntry]) -> "WordLibrary":
        """Create a library from WordEntry values."""
        return cls(entries)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "WordLibrary":
        """Load a library from a JSON list of word objects."""
        with open(path, encoding="utf-8") as f:
            items = json.load(f)
        entries = [
            WordEntry(
                word=item["word"],
                phonics_group=item["phonics_group"],
                difficulty_level=int(item["difficulty_level"]),
            )
            for item in items
        ]
        logger.info(f"Loaded {len(entries)} words from {path}")
        return cls(entries)

    @classmethod
    def from_db(cls, db: Session) -> "WordLibrary":
        """Load the library from the library_words table."""
        rows = db.query(LibraryWord).all()
        return cls(
            WordEntry(
                word=row.word,
                phonics_group=row.phonics_group,
                difficulty_level=row.difficulty_level,
            )
            for row in rows
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, word: str) -> bool:
        return normalize_word(word) in self._entries

    def lookup(self, word: str) -> Optional[WordEntry]:
        """Get the entry of a word, or None when the library has no such word."""
        return self._entries.get(normalize_word(word))

    def groups_at_level(self, level: int) -> Set[str]:
        """Get the phonics groups that have words at the given difficulty level."""
        return set(self._groups_by_level.get(level, set()))

    def levels(self) -> List[int]:
        """Get all difficulty levels present in the library, ascending."""
        return sorted(self._groups_by_level)

    def groups(self) -> Set[str]:
        """Get all phonics groups of the library."""
        return set(self._group_levels)

    def level_of_group(self, phonics_group: str) -> Optional[int]:
        """Get the lowest difficulty level at which a group appears."""
        return self._group_levels.get(phonics_group)

    def words_in_groups(self, groups: Iterable[str]) -> List[WordEntry]:
        """Get the words of the given groups, ordered by difficulty then text."""
        words = []
        for group in set(groups):
            words.extend(self._words_by_group.get(group, []))
        return sorted(words, key=lambda e: (e.difficulty_level, e.word))

    def all_words(self) -> List[WordEntry]:
        """Get every word, ordered by difficulty then text."""
        return sorted(self._entries.values(), key=lambda e: (e.difficulty_level, e.word))


class WordLibraryService:
    """Service for managing the catalog stored in the database."""

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def import_entries(self, entries: Iterable[WordEntry]) -> int:
        """Insert or update catalog words. Returns the number of words written."""
        count = 0
        for entry in entries:
            text = normalize_word(entry.word)
            row = self.db.query(LibraryWord).filter(LibraryWord.word == text).first()
            if row is None:
                row = LibraryWord(word=text)
                self.db.add(row)
            row.phonics_group = entry.phonics_group
            row.difficulty_level = entry.difficulty_level
            count += 1
        self.db.commit()
        logger.info(f"Imported {count} library words")
        return count

    def import_json(self, path: Union[str, Path]) -> int:
        """Import a JSON catalog file into the database."""
        return self.import_entries(WordLibrary.from_json(path).all_words())

    def load(self) -> WordLibrary:
        """Load the stored catalog as a WordLibrary."""
        return WordLibrary.from_db(self.db)
