import os

# Fixed maximum number of results requested from each source. A document a
# source did not report is scored as if ranked MAX_RESULTS_PER_SOURCE + 1.
MAX_RESULTS_PER_SOURCE = 10

# Smoothing factor for learned scores: new = ALPHA * importance + (1 - ALPHA) * old.
LEARNING_ALPHA = 0.3

# Penalty applied to the rank standard deviation in Mean-by-Variance ordering.
MBV_DEVIATION_WEIGHT = 0.5

MAX_QUERY_CHARS = int(os.getenv("METASEARCH_MAX_QUERY_CHARS", "500"))
LEARNED_SOURCE_NAME = "learned"
LEARNING_INDEX_FETCH_LIMIT = int(os.getenv("METASEARCH_LEARNING_FETCH_LIMIT", "20"))
