"""Reading feature matrices and writing result tables"""
from pathlib import Path
from typing import Any, Union
import pandas as pd
import numpy as np

from ..data.contracts import FeatureMatrix
from ..errors import InputError

TABLE_FORMATS = [".csv", ".tsv", ".parquet", ".feather", ".h5", ".hdf5"]


def load_data(path: Union[str, Path], **kwargs: Any) -> Union[pd.DataFrame, np.ndarray]:
    """
    Load a table (csv, tsv, parquet, feather, hdf5) or an array (npy)

    Delimited text is read with the first column as the sample index unless
    ``index_col`` is passed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    suffix = path.suffix.lower()

    if suffix in (".csv", ".tsv"):
        kwargs.setdefault("index_col", 0)
        return pd.read_csv(path, sep="\t" if suffix == ".tsv" else ",", **kwargs)
    if suffix == ".parquet":
        return pd.read_parquet(path, **kwargs)
    if suffix == ".feather":
        return pd.read_feather(path, **kwargs)
    if suffix in (".h5", ".hdf5"):
        return pd.read_hdf(path, **kwargs)
    if suffix == ".npy":
        return np.load(path, **kwargs)

    raise ValueError(
        f"Unsupported file format: '{suffix}'\n"
        f"Supported: {', '.join(TABLE_FORMATS + ['.npy'])} "
        f"(CSV with sample ids in the first column is the simplest choice)"
    )


def load_matrix(path: Union[str, Path], is_count: bool = False, **kwargs: Any) -> FeatureMatrix:
    """
    Load a samples x features matrix and validate it

    Raises:
        InputError: non-numeric, empty or incomplete matrix
    """
    data = load_data(path, **kwargs)
    if isinstance(data, np.ndarray):
        return FeatureMatrix(values=data, is_count=is_count)
    if not isinstance(data, pd.DataFrame):
        raise InputError(f"Cannot build a feature matrix from {type(data).__name__}")
    return FeatureMatrix.from_dataframe(data, is_count=is_count)


def save_data(
    data: Union[pd.DataFrame, np.ndarray],
    path: Union[str, Path],
    **kwargs: Any
) -> None:
    """
    Save a DataFrame (any of TABLE_FORMATS) or an array (.npy)

    Parent directories are created as needed; kwargs go to the pandas or
    numpy writer.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()

    if isinstance(data, np.ndarray):
        if suffix != ".npy":
            raise ValueError(f"Arrays are saved as .npy, got '{suffix}'; convert to a DataFrame for tables")
        np.save(path, data, **kwargs)
        return
    if not isinstance(data, pd.DataFrame):
        raise TypeError(f"Unsupported data type: {type(data)}")

    if suffix in (".csv", ".tsv"):
        data.to_csv(path, sep="\t" if suffix == ".tsv" else ",", **kwargs)
    elif suffix == ".parquet":
        data.to_parquet(path, **kwargs)
    elif suffix == ".feather":
        data.to_feather(path, **kwargs)
    elif suffix in (".h5", ".hdf5"):
        data.to_hdf(path, key="data", **kwargs)
    else:
        raise ValueError(f"Unsupported format for DataFrame: '{suffix}'. Supported: {', '.join(TABLE_FORMATS)}")
