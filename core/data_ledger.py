"""
DataLedger class for trialflow.

Handles data collection and CSV/JSON output.

Every completed trial appends one flat record. Records carry the hierarchical
``internal_node_id`` of the leaf that produced them, so the data generated by
any sub-timeline (e.g. for a loop_function) can be queried by node id.
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
import copy
import json
import logging
import os

import pandas as pd

logger = logging.getLogger(__name__)


def node_id_matches(record_id: Optional[str], node_id: str) -> bool:
    """
    True if ``record_id`` is ``node_id`` itself or lies in its subtree.

    "0.0-1.1" matches "0.0-1.1" and "0.0-1.1-0.0" but not "0.0-1.10".
    """
    if not isinstance(record_id, str):
        return False
    return record_id == node_id or record_id.startswith(node_id + '-')


class DataCollection:
    """
    Ordered list of data records with query helpers.

    Query methods return new collections; records are shared with the ledger
    unless copied explicitly.
    """

    def __init__(self, records: Optional[Iterable[Dict[str, Any]]] = None):
        self.trials: List[Dict[str, Any]] = list(records) if records is not None else []

    # ==================== ACCESS ====================

    def values(self) -> List[Dict[str, Any]]:
        """Underlying list of records."""
        return self.trials

    def count(self) -> int:
        return len(self.trials)

    def first(self, n: int = 1) -> 'DataCollection':
        if n < 1:
            raise ValueError(f"You must query with a positive nonzero integer, got {n}")
        return DataCollection(self.trials[:n])

    def last(self, n: int = 1) -> 'DataCollection':
        if n < 1:
            raise ValueError(f"You must query with a positive nonzero integer, got {n}")
        return DataCollection(self.trials[-n:])

    def top(self) -> Optional[Dict[str, Any]]:
        """Most recent record (None if empty)."""
        return self.trials[-1] if self.trials else None

    def readonly(self) -> 'DataCollection':
        """Deep copy, safe to hand to code that may modify it."""
        return DataCollection(copy.deepcopy(self.trials))

    # ==================== QUERIES ====================

    def filter(self, filters: Union[Mapping[str, Any], List[Mapping[str, Any]], None] = None,
               **kwargs) -> 'DataCollection':
        """
        Records matching all key/value pairs of a filter.

        Args:
            filters: Mapping, or list of mappings combined with OR
            **kwargs: Additional key/value pairs (AND-ed with ``filters``)

        Returns:
            Matching records
        """
        if filters is None:
            filter_list = [dict(kwargs)]
        elif isinstance(filters, Mapping):
            filter_list = [{**filters, **kwargs}]
        else:
            filter_list = [{**f, **kwargs} for f in filters]

        matches = []
        for record in self.trials:
            for f in filter_list:
                if all(key in record and record[key] == value for key, value in f.items()):
                    matches.append(record)
                    break
        return DataCollection(matches)

    def filter_custom(self, fn: Callable[[Dict[str, Any]], bool]) -> 'DataCollection':
        return DataCollection([record for record in self.trials if fn(record)])

    def filter_columns(self, columns: List[str]) -> 'DataCollection':
        """Records reduced to the given keys."""
        return DataCollection([{k: r[k] for k in columns if k in r} for r in self.trials])

    def ignore(self, columns: Union[str, List[str]]) -> 'DataCollection':
        """Copies of the records without the given keys."""
        if isinstance(columns, str):
            columns = [columns]
        return DataCollection([{k: v for k, v in r.items() if k not in columns} for r in self.trials])

    def select(self, column: str) -> List[Any]:
        """Values of one key across records that have it."""
        return [record[column] for record in self.trials if column in record]

    def unique_names(self) -> List[str]:
        """All keys used by any record, in first-seen order."""
        names = []
        for record in self.trials:
            for key in record:
                if key not in names:
                    names.append(key)
        return names

    # ==================== MUTATION ====================

    def push(self, record: Dict[str, Any]) -> 'DataCollection':
        self.trials.append(record)
        return self

    def join(self, other: 'DataCollection') -> 'DataCollection':
        self.trials.extend(other.values())
        return self

    def add_to_all(self, properties: Mapping[str, Any]) -> 'DataCollection':
        for record in self.trials:
            record.update(properties)
        return self

    def add_to_last(self, properties: Mapping[str, Any]) -> 'DataCollection':
        if self.trials:
            self.trials[-1].update(properties)
        return self

    # ==================== EXPORT ====================

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.trials)

    def csv(self) -> str:
        if not self.trials:
            return ''
        return self.to_dataframe().to_csv(index=False)

    def json(self, pretty: bool = False) -> str:
        return json.dumps(self.trials, indent=2 if pretty else None, default=str)

    def __len__(self):
        return len(self.trials)

    def __iter__(self):
        return iter(self.trials)

    def __repr__(self):
        return f"DataCollection(records={len(self.trials)})"


class DataLedger:
    """
    Manages trial data for an experiment.

    Responsibilities:
    - Append one record per completed trial, tagged with its node id
    - Answer node-id queries for loop functions
    - Attach experiment-wide properties to every record
    - Write CSV output
    """

    def __init__(self):
        self.all_data = DataCollection()
        self.properties: Dict[str, Any] = {}

    def reset(self):
        """Clear all collected data and properties."""
        self.all_data = DataCollection()
        self.properties = {}
        logger.debug("DataLedger cleared")

    clear = reset

    def get(self) -> DataCollection:
        return self.all_data

    def append(self, record: Dict[str, Any], node_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Add a trial record.

        Args:
            record: Flat data record
            node_id: Hierarchical id of the leaf that produced it

        Returns:
            The stored record (with properties and internal_node_id)
        """
        stored = dict(record)
        if node_id is not None:
            stored['internal_node_id'] = node_id
        stored.update(self.properties)
        self.all_data.push(stored)
        return stored

    def add_properties(self, properties: Mapping[str, Any]):
        """Add properties to every existing and future record."""
        self.properties.update(properties)
        self.all_data.add_to_all(properties)

    def add_data_to_last_trial(self, data: Mapping[str, Any]):
        self.all_data.add_to_last(data)

    def get_last_trial_data(self) -> DataCollection:
        return DataCollection([self.all_data.top()] if self.all_data.count() else [])

    def get_data_by_node_prefix(self, node_id: str) -> DataCollection:
        return self.query_by_node_prefix(node_id)

    def query_by_node_prefix(self, node_id: str) -> DataCollection:
        """
        Records produced at ``node_id`` or anywhere under it.

        Args:
            node_id: Hierarchical node id, e.g. "0.0-1.0"

        Returns:
            Matching records in append order
        """
        return self.all_data.filter_custom(
            lambda record: node_id_matches(record.get('internal_node_id'), node_id)
        )

    def get_last_timeline_data(self) -> DataCollection:
        """Records of the timeline that produced the most recent record."""
        last = self.all_data.top()
        if last is None or not isinstance(last.get('internal_node_id'), str):
            return DataCollection()
        node_id = last['internal_node_id']
        parent_id = node_id.rsplit('-', 1)[0] if '-' in node_id else node_id
        return self.query_by_node_prefix(parent_id)

    def save_csv(self, path: str) -> Optional[str]:
        """
        Write all records to a CSV file.

        Args:
            path: Output file path (parent directories are created)

        Returns:
            Path written, or None if there was nothing to write
        """
        if not self.all_data.count():
            logger.warning("DataLedger: no data to save")
            return None

        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.all_data.to_dataframe().to_csv(path, index=False)
        logger.info(f"Saved {self.all_data.count()} trials to {path}")
        return path

    def save_json(self, path: str) -> Optional[str]:
        """Write all records to a JSON file (same conventions as save_csv)."""
        if not self.all_data.count():
            logger.warning("DataLedger: no data to save")
            return None

        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            f.write(self.all_data.json(pretty=True))
        logger.info(f"Saved {self.all_data.count()} trials to {path}")
        return path

    def __len__(self):
        return self.all_data.count()

    def __repr__(self):
        return f"DataLedger(trials={self.all_data.count()}, properties={sorted(self.properties)})"
