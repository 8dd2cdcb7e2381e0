import sys

from eksdeploy.cli import main

sys.exit(main())
