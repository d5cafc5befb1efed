from crun.cli import main

raise SystemExit(main())
