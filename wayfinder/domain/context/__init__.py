# This module handles memory and context for planning

# +---------------------+
# |   Page / query      |   (captured text, extracted by the host)
# +---------------------+
#          |
#          v  embed (sticky provider fallback, chunk + mean pool)
# +---------------------+
# |    MemoryStore      |   (persistent snapshot: memories + embeddings)
# |---------------------|
# | web_page            |
# | query               |
# | search_result       |
# | navigation          |
# +---------------------+
#          |
#          v  exact cosine scan, min score, limit
# +------------------------------+
# |       Retrieved context      |
# |------------------------------|
# | Relevant pages (score >= .3) |
# | Memory shortcuts (> .7)      |
# | Execution history (last 100) |
# +------------------------------+
#          |
#          v
#   [planner / execution engine]
