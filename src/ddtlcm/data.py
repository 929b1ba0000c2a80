"""
Validation of response matrices and item group membership.

All checks run before the chain starts so that a bad input never costs
an iteration. Responses are stored three ways for the samplers:

- ``values``: float matrix with NaN for missing responses
- ``filled``: the same matrix with missing entries set to 0
- ``mask``: 1.0 where a response was observed, 0.0 otherwise
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .exceptions import InputValidationError


MembershipLike = Union[Mapping[str, Sequence], Sequence[Sequence]]


@dataclass(frozen=True)
class ResponseData:
    """Validated binary responses plus the item-to-group map."""
    values: np.ndarray
    filled: np.ndarray
    mask: np.ndarray
    item_group: np.ndarray
    group_names: List[str]
    item_names: List[str]
    item_membership: Dict[str, List[int]]

    @property
    def n_subjects(self) -> int:
        return self.values.shape[0]

    @property
    def n_items(self) -> int:
        return self.values.shape[1]

    @property
    def n_groups(self) -> int:
        return len(self.group_names)

    @property
    def has_missing(self) -> bool:
        return bool((self.mask == 0).any())


def _to_float_matrix(data) -> np.ndarray:
    """Convert an array-like or DataFrame to a 2D float matrix with NaN for missing."""
    try:
        if isinstance(data, pd.DataFrame):
            matrix = data.astype("float64").to_numpy(na_value=np.nan, copy=True)
        else:
            matrix = np.array(data, dtype=float)
    except (TypeError, ValueError) as e:
        raise InputValidationError(f"Response data must be numeric 0/1 entries: {e}") from e
    if matrix.ndim != 2:
        raise InputValidationError(
            f"Response data must be a 2D matrix, got {matrix.ndim} dimension(s)"
        )
    if matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise InputValidationError(f"Response data is empty (shape {matrix.shape})")
    return matrix


def _normalize_membership(item_membership: MembershipLike,
                          item_names: List[str]) -> Dict[str, List[int]]:
    """
    Resolve item membership to a mapping of group name -> item indices.

    Items may be given as 0-based integer indices or, when the data came
    from a DataFrame, as column names. A plain list of lists gets the
    group names ``group_1``, ``group_2``, ...
    """
    if isinstance(item_membership, Mapping):
        groups = [(str(name), list(items)) for name, items in item_membership.items()]
    else:
        groups = [(f"group_{g + 1}", list(items)) for g, items in enumerate(item_membership)]

    if len(groups) == 0:
        raise InputValidationError("Item membership must contain at least one group")

    name_to_index = {name: j for j, name in enumerate(item_names)}
    resolved = {}
    for name, items in groups:
        if len(items) == 0:
            raise InputValidationError(f"Item group '{name}' is empty")
        indices = []
        for item in items:
            if isinstance(item, str):
                if item not in name_to_index:
                    raise InputValidationError(
                        f"Item group '{name}' refers to unknown item '{item}'"
                    )
                indices.append(name_to_index[item])
            elif isinstance(item, (int, np.integer)) and not isinstance(item, bool):
                indices.append(int(item))
            else:
                raise InputValidationError(
                    f"Item group '{name}' contains {item!r}; expected an index or column name"
                )
        resolved[name] = indices
    return resolved


def build_item_groups(item_membership: MembershipLike, n_items: int,
                      item_names: Optional[List[str]] = None):
    """
    Check that item membership partitions ``range(n_items)``.

    Args:
        item_membership: Mapping of group name to items, or list of item lists
        n_items: Number of items J
        item_names: Optional item names, enabling membership by column name

    Returns:
        Tuple of (item_group, group_names, membership) where item_group is a
        length-J array of group indices.

    Raises:
        InputValidationError: If an item is out of range, repeated, or missing.
    """
    if item_names is None:
        item_names = [f"item_{j + 1}" for j in range(n_items)]
    membership = _normalize_membership(item_membership, item_names)

    item_group = np.full(n_items, -1, dtype=np.int64)
    group_names = list(membership)
    for g, name in enumerate(group_names):
        for j in membership[name]:
            if j < 0 or j >= n_items:
                raise InputValidationError(
                    f"Item index {j} in group '{name}' is outside 0..{n_items - 1}"
                )
            if item_group[j] != -1:
                raise InputValidationError(
                    f"Item {item_names[j]!r} belongs to more than one group"
                )
            item_group[j] = g

    uncovered = np.flatnonzero(item_group < 0)
    if len(uncovered) > 0:
        missing_names = [item_names[j] for j in uncovered[:5]]
        raise InputValidationError(
            f"{len(uncovered)} item(s) are not assigned to any group, e.g. {missing_names}"
        )
    return item_group, group_names, membership


def validate_response_data(data, item_membership: MembershipLike,
                           allow_missing: bool = False) -> ResponseData:
    """
    Validate a binary response matrix and its item group membership.

    Args:
        data: (n_subjects, n_items) array-like or DataFrame with entries in {0, 1}
        item_membership: Partition of the items into major groups
        allow_missing: Accept NaN entries as missing responses

    Returns:
        ResponseData ready for the samplers

    Raises:
        InputValidationError: On non-binary entries, disallowed missing values
            or a membership that is not a partition of the items.
    """
    item_names = None
    if isinstance(data, pd.DataFrame):
        item_names = [str(col) for col in data.columns]
    values = _to_float_matrix(data)
    n_items = values.shape[1]
    if item_names is None:
        item_names = [f"item_{j + 1}" for j in range(n_items)]

    observed = ~np.isnan(values)
    if not allow_missing and not observed.all():
        raise InputValidationError(
            f"Response data contains {int((~observed).sum())} missing value(s); "
            "set allow_missing=True to treat them as missing responses"
        )
    bad = observed & (values != 0) & (values != 1)
    if bad.any():
        i, j = np.argwhere(bad)[0]
        raise InputValidationError(
            f"Response data must be binary; found {values[i, j]!r} "
            f"at subject {i}, item {item_names[j]!r}"
        )

    item_group, group_names, membership = build_item_groups(
        item_membership, n_items, item_names
    )

    values.setflags(write=False)
    mask = observed.astype(float)
    filled = np.where(observed, values, 0.0)
    mask.setflags(write=False)
    filled.setflags(write=False)
    item_group.setflags(write=False)

    return ResponseData(
        values=values,
        filled=filled,
        mask=mask,
        item_group=item_group,
        group_names=group_names,
        item_names=item_names,
        item_membership=membership,
    )


def validate_new_data(data, reference: ResponseData, allow_missing: bool = False) -> ResponseData:
    """
    Validate a new response matrix against the items a model was fit on.

    DataFrame columns are matched to the fitted items by name, in any order;
    arrays are matched by position.
    """
    if isinstance(data, pd.DataFrame):
        columns = [str(col) for col in data.columns]
        if len(set(columns)) != len(columns):
            raise InputValidationError("New data has duplicate column names")
        known = set(reference.item_names)
        missing = sorted(known - set(columns))
        unknown = [name for name in columns if name not in known]
        if missing or unknown:
            raise InputValidationError(
                f"New data columns do not match the fitted items; "
                f"missing: {missing}, unknown: {unknown}"
            )
        data = data.set_axis(columns, axis=1).reindex(columns=reference.item_names)
    values = _to_float_matrix(data)
    if values.shape[1] != reference.n_items:
        raise InputValidationError(
            f"New data has {values.shape[1]} items but the model was fit on "
            f"{reference.n_items}"
        )
    return validate_response_data(data, reference.item_membership, allow_missing=allow_missing)
