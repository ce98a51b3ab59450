# Routes package init
"""
DeepWiki Backend — API Routes Package
=======================================

Route Inventory:
    - wikis.py:   POST   /api/wiki/upload             (create a wiki from .md files)
                  GET    /api/wiki/list               (cursor-paginated listing)
                  GET    /api/wiki/search             (title/description search)
                  GET    /api/wiki/{slug}             (wiki with its pages)
                  DELETE /api/wiki/{slug}
                  PUT    /api/wiki/{slug}/privacy
    - pages.py:   page CRUD, version history and rollback under
                  /api/wiki/{slug}/pages
    - health.py:  GET    /health

Routes stay thin: parse the request, call WikiService, shape the response.
Errors propagate to the handlers registered in main.py.
"""
