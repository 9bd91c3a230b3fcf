import sys

from make_stemcell.main import main

sys.exit(main())
