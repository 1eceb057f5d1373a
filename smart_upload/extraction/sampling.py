import math


def sample_page_indices(total_pages: int, max_pages: int = 8) -> list[int]:
    """Pick which 0-based pages to show the vision model.

    Short documents are sent whole. Longer ones keep the first two pages
    (title and first part header), the last page, and evenly spaced pages
    in between.
    """
    if total_pages <= 0:
        return []
    if max_pages <= 0 or total_pages <= max_pages:
        return list(range(total_pages))
    if max_pages < 3:
        return list(range(max_pages))

    chosen = {0, 1, total_pages - 1}
    interior = max_pages - len(chosen)
    span = total_pages - 3  # pages 2 .. total_pages - 2
    for k in range(interior):
        chosen.add(2 + math.floor((k + 0.5) * span / interior))
    return sorted(chosen)
