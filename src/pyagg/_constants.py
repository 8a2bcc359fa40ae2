"""Internal constants shared across the library."""

#: Identifier name added to snapshot atoms when the source tag is requested.
SOURCE_IDENTIFIER = "cluster"

#: Source id under which aggregated atoms are stored in a derived view.
AGGREGATE_SOURCE_ID = "aggregate"

#: Entry point every scripted behavior must define at module level.
SCRIPT_ENTRY_POINT = "instantiate"

#: Characters accepted between collation ids in a behavior document.
COLLATION_ID_SEPARATORS = " ,;\t\r\n"

# ------------------------------------------------------------------
# XML document vocabulary
# ------------------------------------------------------------------

RESULT_SET_TAG = "result_set"
RESULT_SET_EXCEPTION_TAG = "resultset_exception"
CLUSTER_TAG = "cluster"
DATA_ATOM_TAG = "data_atom"
ID_TAG = "id"
VALUE_TAG = "value"

QUERY_RESULT_TAG = "query_result_adapter"
QUERY_TAG = "query"
ALERT_TAG = "alert"
SOURCE_TAG = "source"

#: Characters XML 1.0 cannot carry, not even as character references.
XML_INVALID_CHARS = "\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff"
