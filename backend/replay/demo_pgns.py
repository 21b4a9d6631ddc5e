"""Embedded demo games served when no real movetext exists for a board."""
from __future__ import annotations

OPERA_GAME = """[Event "Paris"]
[Site "Paris FRA"]
[Date "1858.??.??"]
[Round "1"]
[White "Paul Morphy"]
[Black "Duke Karl / Count Isouard"]
[Result "1-0"]

1. e4 e5 2. Nf3 d6 3. d4 Bg4 4. dxe5 Bxf3 5. Qxf3 dxe5 6. Bc4 Nf6 7. Qb3 Qe7
8. Nc3 c6 9. Bg5 b5 10. Nxb5 cxb5 11. Bxb5+ Nbd7 12. O-O-O Rd8 13. Rxd7 Rxd7
14. Rd1 Qe6 15. Bxd7+ Nxd7 16. Qb8+ Nxb8 17. Rd8# 1-0"""

LEGALL_MATE = """[Event "Paris"]
[Site "Paris FRA"]
[Date "1750.??.??"]
[Round "1"]
[White "Kermur de Legall"]
[Black "Saint Brie"]
[Result "1-0"]

1. e4 e5 2. Nf3 d6 3. Bc4 Bg4 4. Nc3 g6 5. Nxe5 Bxd1 6. Bxf7+ Ke7 7. Nd5# 1-0"""

# slug -> board number -> PGN
DEMO_PGNS: dict[str, dict[int, str]] = {
    "worldcup2025": {
        1: OPERA_GAME,
        2: LEGALL_MATE,
    },
}
