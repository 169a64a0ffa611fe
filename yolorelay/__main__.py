import sys

from yolorelay.main import main

sys.exit(main())
